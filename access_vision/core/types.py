"""Data types shared by the detection loop, reconciler and gateways."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

JSONDict = dict[str, Any]

# person_id -> epoch millis of the last logged access event
CooldownMap = dict[str, int]

PERSON_TYPES = ("student", "teacher", "staff")


def _as_float(value: Any) -> float:
    """Coerce a collaborator-supplied number, defaulting to 0.0.

    NaN and infinities count as missing.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return 0.0
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


@dataclass(frozen=True)
class BoundingBox:
    """Face bounding box in percentages (0-100) of the unmirrored source frame.

    Attributes:
        x: Left edge, percent of frame width.
        y: Top edge, percent of frame height.
        width: Box width, percent of frame width.
        height: Box height, percent of frame height.
    """

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_payload(cls, data: Any) -> "BoundingBox":
        """Build a box from a collaborator payload.

        Missing or non-numeric fields default to 0. Values are not clamped.
        """
        if not isinstance(data, dict):
            data = {}
        return cls(
            x=_as_float(data.get("x")),
            y=_as_float(data.get("y")),
            width=_as_float(data.get("width")),
            height=_as_float(data.get("height")),
        )

    def clamp(self) -> "BoundingBox":
        """Return a copy with every field clamped to [0, 100]."""
        return BoundingBox(
            x=max(0.0, min(self.x, 100.0)),
            y=max(0.0, min(self.y, 100.0)),
            width=max(0.0, min(self.width, 100.0)),
            height=max(0.0, min(self.height, 100.0)),
        )

    def to_dict(self) -> JSONDict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DetectedFace:
    """One face found in one detection cycle.

    Attributes:
        id: Identifier unique within a single cycle only.
        bounding_box: Box in source (unmirrored) percentages.
        matched_person_id: Roster id of the match, or None when unknown.
        matched_person_name: Display name, present iff matched_person_id is.
        confidence: 0-100, meaningful only when matched.
        is_registered: True iff matched to an active, enrollable identity.
    """

    id: str
    bounding_box: BoundingBox
    matched_person_id: str | None = None
    matched_person_name: str | None = None
    confidence: int = 0
    is_registered: bool = False

    def __post_init__(self) -> None:
        if self.is_registered and self.matched_person_id is None:
            raise ValueError("registered face must carry matched_person_id")
        if self.matched_person_id is not None and self.matched_person_name is None:
            raise ValueError("matched face must carry matched_person_name")

    def to_dict(self) -> JSONDict:
        return {
            "id": self.id,
            "boundingBox": self.bounding_box.to_dict(),
            "matchedPersonId": self.matched_person_id,
            "matchedPersonName": self.matched_person_name,
            "confidence": self.confidence,
            "isRegistered": self.is_registered,
        }


@dataclass(frozen=True)
class RosterEntry:
    """An identity eligible for matching (active, with facial data).

    Attributes:
        id: Person id.
        display_name: Name sent to the recognition service.
        person_type: student, teacher or staff, when known.
    """

    id: str
    display_name: str
    person_type: str | None = None

    def to_payload(self) -> JSONDict:
        """Render the ``{id, name}`` shape the recognition service expects."""
        return {"id": self.id, "name": self.display_name}

    def to_dict(self) -> JSONDict:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "personType": self.person_type,
        }


@dataclass(frozen=True)
class AccessEvent:
    """A granted facial access, logged once per qualifying detection."""

    person_id: str
    person_name: str
    person_type: str | None
    timestamp: datetime
    method: str = "facial"
    granted: bool = True
    access_type: str = "entry"
    location: str = "Main Gate"

    def to_dict(self) -> JSONDict:
        return {
            "personId": self.person_id,
            "personName": self.person_name,
            "personType": self.person_type,
            "method": self.method,
            "granted": self.granted,
            "accessType": self.access_type,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one successful recognition round trip."""

    faces: tuple[DetectedFace, ...] = field(default_factory=tuple)
    total_faces: int = 0
    message: str = ""

    def to_dict(self) -> JSONDict:
        return {
            "faces": [face.to_dict() for face in self.faces],
            "totalFaces": self.total_faces,
            "message": self.message,
        }
