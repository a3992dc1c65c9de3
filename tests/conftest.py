"""Pytest fixtures and test doubles for Access Vision tests."""
from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import httpx
import numpy as np
import pytest
from PIL import Image

from access_vision.core.capture import CaptureSource, encode_data_url
from access_vision.core.gateway import InMemoryGateway, Person
from access_vision.core.recognition_client import RecognitionClient
from access_vision.core.types import (
    BoundingBox,
    DetectedFace,
    DetectionResult,
    RosterEntry,
)

RECOGNITION_URL = "https://recognition.test/functions/v1/face-recognition"


class StaticFrameSource(CaptureSource):
    """Capture source returning one fixed frame, or None while not ready."""

    def __init__(self, frame: Optional[str], device: str = "0") -> None:
        self.frame = frame
        self.device = device
        self.captures = 0
        self.opened = False
        self.closed = False

    @property
    def device_id(self) -> Optional[str]:
        return self.device

    def open(self) -> None:
        self.opened = True

    def capture_frame(self) -> Optional[str]:
        self.captures += 1
        return self.frame

    def close(self) -> None:
        self.closed = True


class ScriptedRecognizer:
    """Recognition double with scripted outcomes and an optional gate.

    Outcomes are consumed in order; the last one repeats. An outcome that is
    an exception is raised. While ``gate`` is set and not released, calls
    stay in flight.
    """

    url = RECOGNITION_URL

    def __init__(self, outcomes: Sequence[Any]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, list[RosterEntry]]] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def detect(self, frame: str, roster: Sequence[RosterEntry], mode: Optional[str] = None):
        self.calls.append((frame, list(roster)))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        pass


def make_face(
    face_id: str = "face_1",
    person_id: Optional[str] = None,
    name: Optional[str] = None,
    registered: bool = False,
    confidence: int = 90,
) -> DetectedFace:
    return DetectedFace(
        id=face_id,
        bounding_box=BoundingBox(x=25, y=15, width=30, height=40),
        matched_person_id=person_id,
        matched_person_name=name if person_id else None,
        confidence=confidence if person_id else 0,
        is_registered=registered,
    )


def make_mock_client(handler) -> RecognitionClient:
    """RecognitionClient whose HTTP traffic goes to ``handler``."""
    transport = httpx.MockTransport(handler)
    return RecognitionClient(
        url=RECOGNITION_URL,
        api_key="anon-key",
        http_client=httpx.AsyncClient(transport=transport),
    )


@pytest.fixture
def sample_frame() -> str:
    """A small JPEG data URL."""
    return encode_data_url(Image.new("RGB", (64, 48), color=(73, 109, 137)))


@pytest.fixture
def sample_frame_bgr() -> np.ndarray:
    return np.zeros((48, 64, 3), dtype=np.uint8)


@pytest.fixture
def people() -> list[Person]:
    return [
        Person(id="p-ana", first_name="Ana", last_name="Lopez", person_type="student", has_facial_data=True),
        Person(id="p-ben", first_name="Ben", last_name="Okafor", person_type="teacher", has_facial_data=True),
        Person(id="p-cal", first_name="Cal", last_name="Reyes", person_type="staff", has_facial_data=False),
        Person(id="p-dee", first_name="Dee", last_name="Kim", person_type="student", has_facial_data=True, active=False),
    ]


@pytest.fixture
def gateway(people: list[Person]) -> InMemoryGateway:
    return InMemoryGateway(people)


@pytest.fixture
def roster(gateway: InMemoryGateway) -> list[RosterEntry]:
    return gateway.list_enrollable()


@pytest.fixture
def ana_result() -> DetectionResult:
    """One registered face (Ana) and one unknown face."""
    return DetectionResult(
        faces=(
            make_face("face_1", "p-ana", "Ana Lopez", registered=True, confidence=88),
            make_face("face_2"),
        ),
        total_faces=2,
        message="2 faces detected",
    )


async def max_loop_lag(duration: float, tick: float = 0.01) -> float:
    """Run a heartbeat for ``duration`` seconds; return its worst oversleep."""
    loop = asyncio.get_running_loop()
    worst = 0.0
    end = loop.time() + duration
    while loop.time() < end:
        before = loop.time()
        await asyncio.sleep(tick)
        worst = max(worst, loop.time() - before - tick)
    return worst
