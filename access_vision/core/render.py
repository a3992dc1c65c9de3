"""Draw detection overlays on a mirrored copy of a frame."""
from __future__ import annotations

from typing import Iterable

import cv2
import numpy as np

from access_vision.core.overlay import face_label, map_to_mirrored_screen_space
from access_vision.core.types import DetectedFace


class OverlayRenderer:
    """Renders the selfie-view overlay the dashboard shows, server side."""

    def __init__(
        self,
        registered_color: tuple[int, int, int] = (94, 197, 34),
        unknown_color: tuple[int, int, int] = (11, 158, 245),
        text_color: tuple[int, int, int] = (255, 255, 255),
        box_thickness: int = 3,
        font_scale: float = 0.6,
        font_thickness: int = 2,
    ) -> None:
        """Initialize the renderer.

        Args:
            registered_color: BGR color for registered faces (default: green).
            unknown_color: BGR color for unknown faces (default: amber).
            text_color: BGR color for labels (default: white).
            box_thickness: Thickness of box lines.
            font_scale: Scale factor for label font.
            font_thickness: Thickness of label font.
        """
        self.registered_color = registered_color
        self.unknown_color = unknown_color
        self.text_color = text_color
        self.box_thickness = box_thickness
        self.font_scale = font_scale
        self.font_thickness = font_thickness
        self.font = cv2.FONT_HERSHEY_SIMPLEX

    def render(self, frame_bgr: np.ndarray, faces: Iterable[DetectedFace]) -> np.ndarray:
        """Mirror a frame horizontally and draw every face on it.

        Args:
            frame_bgr: Unmirrored source frame (not modified).
            faces: Faces with boxes in source percentages.

        Returns:
            New mirrored BGR frame with overlays.
        """
        mirrored = cv2.flip(frame_bgr, 1)
        height, width = mirrored.shape[:2]

        for face in faces:
            overlay = map_to_mirrored_screen_space(face.bounding_box)
            xmin = int(round(overlay.left * width / 100.0))
            ymin = int(round(overlay.top * height / 100.0))
            xmax = min(width - 1, int(round((overlay.left + overlay.width) * width / 100.0)))
            ymax = min(height - 1, int(round((overlay.top + overlay.height) * height / 100.0)))
            color = self.registered_color if face.is_registered else self.unknown_color

            cv2.rectangle(mirrored, (xmin, ymin), (xmax, ymax), color, self.box_thickness)
            self._draw_label(mirrored, face_label(face), xmin, ymin, color)

        return mirrored

    def _draw_label(
        self, frame: np.ndarray, text: str, xmin: int, ymin: int, color: tuple[int, int, int]
    ) -> None:
        (text_width, text_height), baseline = cv2.getTextSize(
            text, self.font, self.font_scale, self.font_thickness
        )
        top = max(0, ymin - text_height - baseline - 5)
        cv2.rectangle(frame, (xmin, top), (xmin + text_width, top + text_height + baseline + 5), color, -1)
        cv2.putText(
            frame,
            text,
            (xmin, top + text_height + 2),
            self.font,
            self.font_scale,
            self.text_color,
            self.font_thickness,
        )


def encode_jpeg(frame_bgr: np.ndarray, quality: int = 85) -> bytes:
    """Encode a BGR frame as JPEG bytes.

    Raises:
        ValueError: If OpenCV cannot encode the frame.
    """
    ok, buffer = cv2.imencode(".jpg", frame_bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError("Failed to encode frame as JPEG")
    return buffer.tobytes()
