"""HTTP client for the hosted face recognition function."""
from __future__ import annotations

import math
from typing import Any, Optional, Sequence

import httpx

from access_vision.config import RecognitionConfig
from access_vision.core.exceptions import (
    MalformedResponseError,
    QuotaExceededError,
    RateLimitedError,
    RecognitionTransportError,
)
from access_vision.core.logger import get_logger
from access_vision.core.types import (
    BoundingBox,
    DetectedFace,
    DetectionResult,
    JSONDict,
    RosterEntry,
)
from access_vision.core.validation import validate_frame

logger = get_logger("recognition")

MODES = ("detect", "recognize")

# Box reported for the single face of a "recognize" answer, which has no geometry.
FULL_FRAME = BoundingBox(x=0.0, y=0.0, width=100.0, height=100.0)


def _as_confidence(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    # json.loads accepts NaN and Infinity.
    if not math.isfinite(value):
        return 0
    return int(round(value))


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none"):
        return None
    return text


def parse_face(
    payload: Any, index: int, roster_by_id: dict[str, RosterEntry]
) -> Optional[DetectedFace]:
    """Build a DetectedFace from one collaborator face object.

    Box and confidence values are passed through unclamped. A face only counts
    as registered when its match is in the roster sent with the request, and a
    missing name is filled from that roster.

    Args:
        payload: One element of the ``faces`` array.
        index: Position in the array, used when the face has no id.
        roster_by_id: Roster sent with the request, keyed by id.

    Returns:
        The parsed face, or None when the element is not a JSON object.
    """
    if not isinstance(payload, dict):
        return None

    face_id = _as_optional_str(payload.get("id")) or f"face_{index + 1}"
    person_id = _as_optional_str(payload.get("matchedPersonId"))
    person_name = _as_optional_str(payload.get("matchedPersonName"))
    entry = roster_by_id.get(person_id) if person_id else None

    if person_id is not None and person_name is None:
        person_name = entry.display_name if entry else person_id

    registered = bool(payload.get("isRegistered")) and entry is not None

    return DetectedFace(
        id=face_id,
        bounding_box=BoundingBox.from_payload(payload.get("boundingBox")),
        matched_person_id=person_id,
        matched_person_name=person_name if person_id else None,
        confidence=_as_confidence(payload.get("confidence")),
        is_registered=registered,
    )


def parse_detection(data: JSONDict, roster: Sequence[RosterEntry]) -> DetectionResult:
    """Parse a ``detect`` mode answer; a missing ``faces`` array means none."""
    roster_by_id = {entry.id: entry for entry in roster}
    raw_faces = data.get("faces")
    if not isinstance(raw_faces, list):
        raw_faces = []

    faces = []
    for index, item in enumerate(raw_faces):
        face = parse_face(item, index, roster_by_id)
        if face is None:
            logger.debug(f"Skipping malformed face entry at index {index}")
            continue
        faces.append(face)

    total = data.get("totalFaces")
    if isinstance(total, bool) or not isinstance(total, int):
        total = len(faces)

    return DetectionResult(
        faces=tuple(faces),
        total_faces=total,
        message=str(data.get("message") or ""),
    )


def parse_recognition(
    data: JSONDict, roster: Sequence[RosterEntry]
) -> DetectionResult:
    """Normalize a single-face ``recognize`` answer into a DetectionResult."""
    message = str(data.get("message") or "")
    if "faces" in data:
        return parse_detection(data, roster)
    if not data.get("faceDetected"):
        return DetectionResult(faces=(), total_faces=0, message=message)

    payload = {
        "id": "face_1",
        "matchedPersonId": data.get("matchedPersonId") if data.get("matchFound") else None,
        "matchedPersonName": data.get("matchedPersonName"),
        "confidence": data.get("confidence"),
        "isRegistered": bool(data.get("matchFound")),
    }
    face = parse_face(payload, 0, {entry.id: entry for entry in roster})
    face = DetectedFace(
        id=face.id,
        bounding_box=FULL_FRAME,
        matched_person_id=face.matched_person_id,
        matched_person_name=face.matched_person_name,
        confidence=face.confidence,
        is_registered=face.is_registered,
    )
    return DetectionResult(faces=(face,), total_faces=1, message=message)


class RecognitionClient:
    """One round trip per call to the recognition function.

    No caching and no retries: a failed call raises and the caller decides
    whether to try again on its next tick.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        mode: str = "detect",
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Recognition endpoint URL.
            api_key: Bearer token / anon key, sent as ``Authorization`` and ``apikey``.
            timeout: Request timeout in seconds.
            mode: Default mode, ``"detect"`` or ``"recognize"``.
            http_client: Optional preconfigured client (used by tests).
        """
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.mode = mode
        self._client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_config(cls, config: RecognitionConfig) -> "RecognitionClient":
        return cls(url=config.url, api_key=config.api_key, timeout=config.timeout)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def detect(
        self,
        frame: str,
        roster: Sequence[RosterEntry],
        mode: Optional[str] = None,
    ) -> DetectionResult:
        """Send one frame and the current roster to the recognition service.

        An empty roster is valid and yields unmatched faces (or none).

        Args:
            frame: JPEG data URL.
            roster: Enrollable identities to match against.
            mode: Override the client's default mode for this call.

        Returns:
            Parsed detection result; ``faces`` is empty when nothing was found.

        Raises:
            ValidationError: If the frame is empty or not an image data URL.
            RateLimitedError: On HTTP 429.
            QuotaExceededError: On HTTP 402.
            RecognitionTransportError: On network failure or other non-2xx.
            MalformedResponseError: If the body is not a JSON object.
        """
        validate_frame(frame)
        mode = mode or self.mode
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}")

        body = {
            "capturedImage": frame,
            "registeredFaces": [entry.to_payload() for entry in roster],
            "mode": mode,
        }

        try:
            response = await self._get_client().post(
                self.url, json=body, headers=self._headers(), timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise RecognitionTransportError(f"Recognition request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RecognitionTransportError(f"Recognition request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError("Recognition rate limit exceeded", status_code=429)
        if response.status_code == 402:
            raise QuotaExceededError("Recognition quota exhausted", status_code=402)
        if not response.is_success:
            raise RecognitionTransportError(
                f"Recognition service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Recognition response is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponseError("Recognition response is not a JSON object")

        if mode == "recognize":
            result = parse_recognition(data, roster)
        else:
            result = parse_detection(data, roster)

        logger.debug(
            f"Recognition ({mode}) returned {len(result.faces)} face(s): {result.message}"
        )
        return result

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
