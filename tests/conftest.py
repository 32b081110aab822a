"""Shared fixtures for the face identity tests."""
import math

import numpy as np
import pytest

from face_people.models import BoundingBox, FaceRecord, new_id
from face_people.store import FaceStore


@pytest.fixture
def store(tmp_path):
    """Provide an isolated store backed by a temporary directory."""
    face_store = FaceStore(tmp_path / "faces.sqlite", tmp_path / "faces")
    yield face_store
    face_store.close()


@pytest.fixture
def make_face():
    """Factory for face records with an optional embedding."""
    def factory(embedding=None, photo="/photos/a.jpg", face_id=None):
        face_id = face_id or new_id()
        return FaceRecord(
            id=face_id,
            face_image_path=f"/crops/{face_id}.jpg",
            source_photo_path=photo,
            bounding_box=BoundingBox(10, 20, 64, 64),
            embedding=None if embedding is None else np.asarray(embedding, dtype=np.float32),
        )
    return factory


def at_angle(degrees):
    """Unit vector in the plane at the given angle from the x axis."""
    theta = math.radians(degrees)
    return np.array([math.cos(theta), math.sin(theta)])
