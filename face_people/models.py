"""
Domain records for faces and people.

A :class:`FaceRecord` is one detected face in one photo.  It is created once
and never modified; only a full purge removes it.  A :class:`Person` groups
face records by id and is the only mutable aggregate: it can be renamed,
grow, be merged into another person or be rebuilt by clustering.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

DEFAULT_PERSON_NAME = "Unnamed Person"


def new_id() -> str:
    return str(uuid.uuid4())


def photo_key(photo_path: Union[str, "os.PathLike[str]"]) -> str:
    """Canonical key of a photo: its absolute path with symlinks resolved."""
    return str(Path(photo_path).expanduser().resolve())


@dataclass(frozen=True)
class BoundingBox:
    """Integer pixel rectangle in the source photo's coordinate space."""
    x: int
    y: int
    width: int
    height: int

    def scaled(self, factor: float) -> "BoundingBox":
        return BoundingBox(
            int(self.x * factor),
            int(self.y * factor),
            int(self.width * factor),
            int(self.height * factor),
        )


@dataclass(eq=False)
class FaceRecord:
    """A single face detected in a photo.

    Attributes
    ----------
    id: str
        Stable unique identifier, also used to name the crop file.
    face_image_path: str
        Path of the crop image owned by the store.
    source_photo_path: str
        Path of the original photo.  The photo itself is not owned.
    bounding_box: BoundingBox
        Face rectangle in the original photo.
    embedding: ndarray, optional
        Normalised identity vector, or ``None`` if extraction failed.  Faces
        without an embedding are never matched or clustered.
    """
    id: str
    face_image_path: str
    source_photo_path: str
    bounding_box: BoundingBox
    embedding: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.embedding is not None:
            embedding = np.array(self.embedding, dtype=np.float32).ravel()
            embedding.flags.writeable = False
            self.embedding = embedding

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and self.embedding.size > 0


@dataclass
class Person:
    """A durable identity grouping face records by id."""
    id: str = field(default_factory=new_id)
    name: str = DEFAULT_PERSON_NAME
    face_ids: List[str] = field(default_factory=list)
    representative_face_id: Optional[str] = None

    def copy(self) -> "Person":
        return Person(
            id=self.id,
            name=self.name,
            face_ids=list(self.face_ids),
            representative_face_id=self.representative_face_id,
        )
