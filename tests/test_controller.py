"""Tests for the detection loop controller."""
from __future__ import annotations

import asyncio
import time

import pytest

from access_vision.core.controller import ControllerState, DetectionLoopController
from access_vision.core.exceptions import (
    CameraUnavailableError,
    RecognitionTransportError,
    ValidationError,
)
from access_vision.core.types import DetectionResult
from conftest import ScriptedRecognizer, StaticFrameSource, make_face, max_loop_lag

EMPTY = DetectionResult(faces=(), total_faces=0, message="No faces detected")


async def shutdown(controller: DetectionLoopController) -> None:
    controller.stop()
    await controller.wait_for_cycle()
    await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class UnavailableCamera(StaticFrameSource):
    def open(self) -> None:
        raise CameraUnavailableError("permission denied")


class SlowFrameSource(StaticFrameSource):
    def capture_frame(self):
        time.sleep(0.3)
        return super().capture_frame()


class TestLifecycle:
    """Tests for start/stop transitions."""

    @pytest.mark.asyncio
    async def test_start_issues_first_cycle_immediately(self, sample_frame, roster, ana_result):
        recognizer = ScriptedRecognizer([ana_result])
        controller = DetectionLoopController(recognizer)
        seen = []
        controller.subscribe(seen.append)

        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        assert controller.state is ControllerState.RUNNING
        await controller.wait_for_cycle()

        assert controller.detections == ana_result.faces
        assert seen == [ana_result.faces]
        assert recognizer.calls[0] == (sample_frame, roster)
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_stop_clears_detections(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        seen = []
        controller.subscribe(seen.append)
        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()

        controller.stop()
        assert controller.state is ControllerState.IDLE
        assert controller.detections == ()
        assert seen[-1] == ()
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_double_start_is_noop(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        source = StaticFrameSource(sample_frame)

        controller.start(source, lambda: roster, interval_ms=1000)
        controller.start(source, lambda: roster, interval_ms=50)
        await controller.wait_for_cycle()

        assert controller.cycles_issued == 1
        assert controller.interval_ms == 1000
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_double_stop_is_noop(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        seen = []
        controller.subscribe(seen.append)
        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()

        controller.stop()
        controller.stop()

        assert seen == [ana_result.faces, ()]
        assert controller.detections == ()

    @pytest.mark.asyncio
    async def test_stop_while_idle_publishes_nothing(self):
        controller = DetectionLoopController(ScriptedRecognizer([EMPTY]))
        seen = []
        controller.subscribe(seen.append)
        controller.stop()
        assert seen == []

    @pytest.mark.asyncio
    async def test_camera_unavailable_stays_idle(self, sample_frame, roster):
        recognizer = ScriptedRecognizer([EMPTY])
        controller = DetectionLoopController(recognizer)

        with pytest.raises(CameraUnavailableError):
            controller.start(UnavailableCamera(sample_frame), lambda: roster)

        assert controller.state is ControllerState.IDLE
        assert recognizer.calls == []

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected(self, sample_frame, roster):
        controller = DetectionLoopController(ScriptedRecognizer([EMPTY]))
        with pytest.raises(ValidationError):
            controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=0)
        assert controller.state is ControllerState.IDLE


class TestCycles:
    """Tests for tick scheduling and result handling."""

    @pytest.mark.asyncio
    async def test_at_most_one_call_in_flight(self, sample_frame, roster, ana_result):
        recognizer = ScriptedRecognizer([ana_result])
        gate = recognizer.hold()
        controller = DetectionLoopController(recognizer)

        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=10)
        await asyncio.sleep(0.1)

        assert len(recognizer.calls) == 1
        assert controller.in_flight is True
        assert controller.ticks_skipped >= 3
        assert controller.detections == ()

        gate.set()
        await controller.wait_for_cycle()
        assert controller.detections == ana_result.faces
        assert recognizer.max_active == 1
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_result_after_stop_is_discarded(self, sample_frame, roster, ana_result):
        recognizer = ScriptedRecognizer([ana_result])
        gate = recognizer.hold()
        controller = DetectionLoopController(recognizer)
        seen = []
        controller.subscribe(seen.append)

        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await wait_until(lambda: len(recognizer.calls) == 1)
        assert len(recognizer.calls) == 1

        controller.stop()
        gate.set()
        await controller.wait_for_cycle()

        assert controller.detections == ()
        assert seen == [()]

    @pytest.mark.asyncio
    async def test_result_from_previous_run_is_discarded(self, sample_frame, roster, ana_result):
        ben = make_face("face_1", "p-ben", "Ben Okafor", registered=True)
        fresh = DetectionResult(faces=(ben,), total_faces=1, message="1 face detected")
        recognizer = ScriptedRecognizer([ana_result, fresh])
        gate = recognizer.hold()
        controller = DetectionLoopController(recognizer)
        seen = []
        controller.subscribe(seen.append)
        source = StaticFrameSource(sample_frame)

        controller.start(source, lambda: roster, interval_ms=1000)
        await wait_until(lambda: len(recognizer.calls) == 1)
        controller.stop()
        controller.start(source, lambda: roster, interval_ms=1000)
        await wait_until(lambda: len(recognizer.calls) == 2)
        assert len(recognizer.calls) == 2

        gate.set()
        await controller.wait_for_cycle()

        assert controller.detections == fresh.faces
        assert ana_result.faces not in seen
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_failed_cycle_keeps_last_detections(self, sample_frame, roster, ana_result):
        recognizer = ScriptedRecognizer([ana_result, RecognitionTransportError("upstream down", 503)])
        controller = DetectionLoopController(recognizer)

        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=20)
        await wait_until(lambda: controller.failures >= 2)

        assert controller.detections == ana_result.faces
        assert controller.is_running
        assert controller.last_error == "upstream down"
        assert controller.cycles_issued >= 3
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_missing_frame_skips_recognition(self, roster):
        recognizer = ScriptedRecognizer([EMPTY])
        source = StaticFrameSource(None)
        controller = DetectionLoopController(recognizer)

        controller.start(source, lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()

        assert source.captures == 1
        assert recognizer.calls == []
        assert controller.in_flight is False
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_roster_is_read_every_cycle(self, sample_frame, roster):
        recognizer = ScriptedRecognizer([EMPTY])
        controller = DetectionLoopController(recognizer)
        reads = []

        def provider():
            reads.append(len(reads))
            return roster[: len(reads)]

        controller.start(StaticFrameSource(sample_frame), provider, interval_ms=10)
        await wait_until(lambda: len(recognizer.calls) >= 3)
        await shutdown(controller)

        assert len(reads) == len(recognizer.calls)
        assert recognizer.calls[0][1] == roster[:1]
        assert recognizer.calls[1][1] == roster[:2]

    @pytest.mark.asyncio
    async def test_stop_from_subscriber(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        seen = []

        def on_faces(faces):
            seen.append(faces)
            if faces:
                controller.stop()

        controller.subscribe(on_faces)
        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()

        assert controller.state is ControllerState.IDLE
        assert controller.detections == ()
        assert controller.in_flight is False
        assert seen[0] == ana_result.faces
        assert seen[1] == ()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_block_others(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        seen = []

        def broken(faces):
            raise RuntimeError("render failed")

        controller.subscribe(broken)
        controller.subscribe(seen.append)
        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()

        assert seen == [ana_result.faces]
        await shutdown(controller)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, sample_frame, roster, ana_result):
        controller = DetectionLoopController(ScriptedRecognizer([ana_result]))
        seen = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()

        controller.start(StaticFrameSource(sample_frame), lambda: roster, interval_ms=1000)
        await controller.wait_for_cycle()
        await shutdown(controller)

        assert seen == []

    @pytest.mark.asyncio
    async def test_blocking_capture_and_roster_stay_off_the_loop(self, sample_frame, roster, ana_result):
        recognizer = ScriptedRecognizer([ana_result])
        controller = DetectionLoopController(recognizer)

        def slow_roster():
            time.sleep(0.3)
            return roster

        controller.start(SlowFrameSource(sample_frame), slow_roster, interval_ms=1000)
        lag = await max_loop_lag(0.8)
        await shutdown(controller)

        assert lag < 0.15
        assert recognizer.calls == [(sample_frame, roster)]
