"""Tests for image loading, cropping and alignment helpers."""
import cv2
import numpy as np

from face_people.detection import FaceDetection
from face_people.images import (
    align_face, display_crop, expand_paths, is_readable_image, load_image, padded_crop, square_crop_rect
)
from face_people.models import BoundingBox


def test_square_crop_rect_is_clipped_to_image():
    rect = square_crop_rect(BoundingBox(0, 0, 40, 40), 400, 400)
    # centre (20, 20) limits the half size to 20
    assert rect == BoundingBox(0, 0, 40, 40)
    assert square_crop_rect(BoundingBox(100, 100, 50, 50), 400, 400) == BoundingBox(90, 90, 70, 70)
    assert square_crop_rect(BoundingBox(400, 400, 0, 0), 400, 400) is None


def test_display_crop_size():
    img = np.zeros((200, 200, 3), dtype=np.uint8)
    assert display_crop(img, BoundingBox(50, 50, 60, 60), size=64).shape == (64, 64, 3)


def test_load_image_downscales(tmp_path):
    path = tmp_path / "wide.png"
    cv2.imwrite(str(path), np.zeros((100, 3200, 3), dtype=np.uint8))
    img, scale = load_image(path, max_dim=1600)
    assert scale == 0.5
    assert img.shape[:2] == (50, 1600)


def test_load_image_failure(tmp_path):
    path = tmp_path / "bad.jpg"
    path.write_bytes(b"nope")
    assert load_image(path) is None
    assert not is_readable_image(path)


def test_align_face_with_eyes():
    img = np.random.default_rng(0).integers(0, 255, size=(300, 300, 3), dtype=np.uint8)
    detection = FaceDetection(BoundingBox(100, 100, 100, 100), (130.0, 140.0), (170.0, 145.0))
    assert align_face(img, detection, size=112).shape == (112, 112, 3)


def test_align_face_falls_back_to_padded_crop():
    img = np.zeros((300, 300, 3), dtype=np.uint8)
    detection = FaceDetection(BoundingBox(100, 100, 50, 50))
    aligned = align_face(img, detection)
    assert aligned.shape == padded_crop(img, detection.bounding_box).shape == (70, 70, 3)


def test_expand_paths(tmp_path):
    (tmp_path / "sub").mkdir()
    for name in ("b.jpg", "sub/a.PNG", "readme.md"):
        (tmp_path / name).write_bytes(b"")
    found = [p.relative_to(tmp_path).as_posix() for p in expand_paths([tmp_path])]
    assert found == ["b.jpg", "sub/a.PNG"]
