"""Map detection boxes onto a horizontally mirrored (selfie view) video element."""
from __future__ import annotations

from dataclasses import dataclass

from access_vision.core.types import BoundingBox, DetectedFace, JSONDict


@dataclass(frozen=True)
class OverlayBox:
    """Absolute position over the mirrored video, in percent of its size."""

    left: float
    top: float
    width: float
    height: float

    def to_dict(self) -> JSONDict:
        return {
            "left": self.left,
            "top": self.top,
            "width": self.width,
            "height": self.height,
        }


def _clamp_percent(value: float) -> float:
    return max(0.0, min(float(value), 100.0))


def map_to_mirrored_screen_space(box: BoundingBox) -> OverlayBox:
    """Flip a source-space box for display over a mirrored video.

    Inputs are clamped to [0, 100] first. Only the horizontal position
    changes: ``left = 100 - x - width``, itself kept inside [0, 100].

    Args:
        box: Box in unmirrored source percentages.

    Returns:
        Overlay position in percentages.
    """
    box = box.clamp()
    left = _clamp_percent(100.0 - box.x - box.width)
    return OverlayBox(left=left, top=box.y, width=box.width, height=box.height)


def face_label(face: DetectedFace) -> str:
    """Return the caption shown above a face box."""
    if face.is_registered and face.matched_person_name:
        return f"{face.matched_person_name} {face.confidence}%"
    return "Unknown"


def overlay_for_face(face: DetectedFace) -> JSONDict:
    """Render one face as a browser overlay item."""
    return {
        "id": face.id,
        "box": map_to_mirrored_screen_space(face.bounding_box).to_dict(),
        "label": face_label(face),
        "registered": face.is_registered,
    }


def overlays_for_faces(faces: tuple[DetectedFace, ...] | list[DetectedFace]) -> list[JSONDict]:
    return [overlay_for_face(face) for face in faces]
