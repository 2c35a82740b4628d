"""
Optional diagnostic sinks for cost evaluations.

The cost function calls sink.on_frame() after scoring each frame. The
default sink does nothing; OverlayDiagnosticSink writes the projected points
drawn over the image to PNG files.
"""

from pathlib import Path
from typing import Optional, Protocol, Union

import cv2
import numpy as np

from camlidar_nid.core.logging_config import get_logger
from camlidar_nid.frames import Frame
from camlidar_nid.projector import SampleBatch

logger = get_logger(__name__)


class DiagnosticSink(Protocol):
    def on_frame(self, frame_index: int, frame: Frame, samples: SampleBatch,
                 nid: Optional[float]) -> None:
        ...


class NullDiagnosticSink:
    """Discards everything."""

    def on_frame(self, frame_index, frame, samples, nid) -> None:
        return None


class OverlayDiagnosticSink:
    """
    Draws projected LiDAR points over the frame image and saves it.

    Points are colored by reflectance (JET colormap). Files are named
    frame_<index>_eval_<counter>.png; set every_n to thin the output.
    """

    def __init__(self, output_dir: Union[str, Path], every_n: int = 1, radius: int = 1):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.every_n = max(1, int(every_n))
        self.radius = radius
        self._calls = 0

    def render(self, frame: Frame, samples: SampleBatch, nid: Optional[float]) -> np.ndarray:
        canvas = cv2.cvtColor(frame.image, cv2.COLOR_GRAY2BGR)
        if len(samples):
            colors = cv2.applyColorMap(samples.ref.astype(np.uint8).reshape(-1, 1),
                                       cv2.COLORMAP_JET).reshape(-1, 3)
            for col, row, color in zip(samples.cols, samples.rows, colors):
                cv2.circle(canvas, (int(col), int(row)), self.radius,
                           tuple(int(c) for c in color), -1)
        label = "NID: n/a" if nid is None else f"NID: {nid:.4f}"
        cv2.putText(canvas, label, (10, 25), cv2.FONT_HERSHEY_SIMPLEX, 0.7,
                    (0, 255, 0), 2, cv2.LINE_AA)
        return canvas

    def on_frame(self, frame_index: int, frame: Frame, samples: SampleBatch,
                 nid: Optional[float]) -> None:
        self._calls += 1
        if (self._calls - 1) % self.every_n:
            return
        path = self.output_dir / f"frame_{frame_index:03d}_eval_{self._calls:06d}.png"
        if not cv2.imwrite(str(path), self.render(frame, samples, nid)):
            logger.warning(f"Could not write diagnostic image {path}")
