"""
Face detection boundary.

Detection itself is performed by an external tool.  The core only needs a
:class:`Detector` that, given a photo path, returns face rectangles with
optional eye positions.  Any failure (missing tool, timeout, malformed
output) is reported as "no faces" so a photo is never retried forever.

:class:`SubprocessDetector` runs an executable that prints a JSON array
such as ``[{"x": 10, "y": 20, "width": 64, "height": 64, "leftEyeX": ...}]``
on standard output.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .models import BoundingBox

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class FaceDetection:
    """A face found in a photo, in the photo's pixel coordinates."""
    bounding_box: BoundingBox
    left_eye: Optional[Point] = None
    right_eye: Optional[Point] = None

    @property
    def has_eyes(self) -> bool:
        return self.left_eye is not None and self.right_eye is not None

    def scaled(self, factor: float) -> "FaceDetection":
        def scale(point: Optional[Point]) -> Optional[Point]:
            return None if point is None else (point[0] * factor, point[1] * factor)
        return FaceDetection(self.bounding_box.scaled(factor), scale(self.left_eye), scale(self.right_eye))


class Detector:
    """Base class for all detectors."""

    def detect(self, photo_path: Path, cancel: Optional[threading.Event] = None) -> List[FaceDetection]:
        """Return the faces found in ``photo_path``, or an empty list on failure."""
        raise NotImplementedError


class NullDetector(Detector):
    """Detector used when no detection tool is configured."""

    def detect(self, photo_path: Path, cancel: Optional[threading.Event] = None) -> List[FaceDetection]:
        return []


def parse_detections(output: str) -> List[FaceDetection]:
    """Parse the JSON printed by a detector executable.

    Returns an empty list if the output is not a JSON array of objects
    carrying numeric ``x``, ``y``, ``width`` and ``height`` fields.  Eye
    positions are used only when all four eye coordinates are present.
    """
    try:
        items = json.loads(output)
    except ValueError:
        return []
    if not isinstance(items, list):
        return []
    results: List[FaceDetection] = []
    try:
        for item in items:
            box = BoundingBox(int(item["x"]), int(item["y"]), int(item["width"]), int(item["height"]))
            left_eye = right_eye = None
            if all(key in item for key in ("leftEyeX", "leftEyeY", "rightEyeX", "rightEyeY")):
                left_eye = (float(item["leftEyeX"]), float(item["leftEyeY"]))
                right_eye = (float(item["rightEyeX"]), float(item["rightEyeY"]))
            results.append(FaceDetection(box, left_eye, right_eye))
    except (KeyError, TypeError, ValueError):
        return []
    return results


class SubprocessDetector(Detector):
    """Run an external detector executable for each photo.

    Parameters
    ----------
    command: sequence of str
        Executable and leading arguments.  The photo path is appended.
    timeout: float
        Seconds to wait for the process before killing it.
    """

    def __init__(self, command: Sequence[str], timeout: float = 3.0) -> None:
        if not command:
            raise ValueError("Detector command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    def available(self) -> bool:
        executable = self.command[0]
        return shutil.which(executable) is not None or Path(executable).is_file()

    def detect(self, photo_path: Path, cancel: Optional[threading.Event] = None) -> List[FaceDetection]:
        path = Path(photo_path)
        if not path.is_file() or not self.available():
            return []
        if cancel is not None and cancel.is_set():
            return []
        try:
            proc = subprocess.Popen(
                self.command + [str(path)],
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            logger.warning("Could not start face detector %s: %s", self.command[0], exc)
            return []

        deadline = time.monotonic() + self.timeout
        while True:
            if cancel is not None and cancel.is_set():
                self._kill(proc)
                return []
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._kill(proc)
                logger.warning("Timeout detecting faces in %s", path.name)
                return []
            try:
                output, _ = proc.communicate(timeout=min(remaining, _POLL_INTERVAL))
                break
            except subprocess.TimeoutExpired:
                continue

        if proc.returncode != 0:
            logger.debug("Face detector exited with status %d for %s", proc.returncode, path.name)
            return []
        return parse_detections(output)

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        proc.kill()
        proc.communicate()
