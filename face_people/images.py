"""
Image scanning, loading, cropping and alignment.

This module provides utility functions to iterate over the photos of a
library, reject files that cannot be decoded, and turn a face detection
into the two images the rest of the system needs: a square display crop
stored alongside the face record, and an aligned crop fed to the embedder.
It is intentionally kept decoupled from detection and recognition so it
can be reused in other contexts.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .detection import FaceDetection
from .models import BoundingBox

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".webp", ".tif", ".tiff", ".heic")

# Target eye positions as fractions of the aligned output
LEFT_EYE_X = 0.35
RIGHT_EYE_X = 0.65
EYE_Y = 0.40
CROP_MARGIN = 1.4


def iter_image_paths(root: Path) -> Iterator[Path]:
    """Yield all files under ``root`` that have an image-like extension."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for fn in sorted(filenames):
            if fn.lower().endswith(IMAGE_EXTENSIONS):
                yield Path(dirpath) / fn


def expand_paths(paths: Iterable[Path]) -> Iterator[Path]:
    """Yield image files from a mix of file and directory paths.

    Paths are made absolute with symlinks resolved, so the same photo
    reached through different spellings yields the same path.
    """
    for path in paths:
        path = Path(path).expanduser().resolve()
        if path.is_dir():
            yield from iter_image_paths(path)
        elif path.is_file():
            yield path


def is_readable_image(path: Path) -> bool:
    """Return ``True`` if Pillow can identify and verify the file."""
    try:
        with Image.open(path) as im:
            im.verify()
        return True
    except Exception:
        return False


def load_image(path: Path, max_dim: int = 1600) -> Optional[Tuple[np.ndarray, float]]:
    """Read a photo as BGR and downscale it so neither side exceeds ``max_dim``.

    Returns
    -------
    tuple of (ndarray, float) or None
        The image and the scale factor applied to it, or ``None`` if the file
        cannot be decoded.
    """
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None or img.size == 0:
        return None
    height, width = img.shape[:2]
    scale = 1.0
    if width > max_dim or height > max_dim:
        scale = min(max_dim / width, max_dim / height)
        img = cv2.resize(img, (0, 0), fx=scale, fy=scale, interpolation=cv2.INTER_AREA)
    return img, scale


def square_crop_rect(box: BoundingBox, img_width: int, img_height: int,
                     margin: float = CROP_MARGIN) -> Optional[BoundingBox]:
    """Square region centred on ``box``, enlarged by ``margin``.

    The square shrinks so it stays inside the image.  Returns ``None`` if
    nothing is left.
    """
    center_x = box.x + box.width // 2
    center_y = box.y + box.height // 2
    half = int(max(box.width, box.height) * margin) // 2
    half = min(half, center_x, center_y, img_width - center_x, img_height - center_y)
    if half <= 0:
        return None
    return BoundingBox(center_x - half, center_y - half, half * 2, half * 2)


def display_crop(img: np.ndarray, box: BoundingBox, size: int = 128) -> Optional[np.ndarray]:
    """Square crop around a face resized to ``size`` x ``size``."""
    height, width = img.shape[:2]
    rect = square_crop_rect(box, width, height)
    if rect is None:
        return None
    region = img[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width]
    return cv2.resize(region, (size, size), interpolation=cv2.INTER_AREA)


def padded_crop(img: np.ndarray, box: BoundingBox, padding: float = 0.2) -> np.ndarray:
    """Bounding box crop with ``padding`` (fraction of the width) on every side."""
    height, width = img.shape[:2]
    pad = int(box.width * padding)
    x0 = max(0, box.x - pad)
    y0 = max(0, box.y - pad)
    x1 = min(width, box.x + box.width + pad)
    y1 = min(height, box.y + box.height + pad)
    return img[y0:y1, x0:x1]


def align_face(img: np.ndarray, detection: FaceDetection, size: int = 112) -> np.ndarray:
    """Rotate and scale a face so the eyes land on fixed positions.

    Without eye landmarks the padded bounding box crop is returned instead.
    """
    if not detection.has_eyes:
        return padded_crop(img, detection.bounding_box)
    (lx, ly), (rx, ry) = detection.left_eye, detection.right_eye
    dx = rx - lx
    dy = ry - ly
    dist = math.hypot(dx, dy)
    if dist == 0:
        return padded_crop(img, detection.bounding_box)
    center = ((lx + rx) / 2.0, (ly + ry) / 2.0)
    angle = math.degrees(math.atan2(dy, dx))
    scale = (RIGHT_EYE_X - LEFT_EYE_X) * size / dist
    matrix = cv2.getRotationMatrix2D(center, angle, scale)
    matrix[0, 2] += size * 0.5 - center[0]
    matrix[1, 2] += size * EYE_Y - center[1]
    return cv2.warpAffine(img, matrix, (size, size), flags=cv2.INTER_CUBIC)


def save_crop(crop: np.ndarray, path: Path) -> bool:
    path.parent.mkdir(parents=True, exist_ok=True)
    ok = cv2.imwrite(str(path), crop)
    if not ok:
        logger.warning("Could not write face crop %s", path)
    return bool(ok)
