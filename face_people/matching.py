"""
Incremental assignment of new faces to existing people.

Each person is summarised by the normalised centroid of a bounded sample of
its face embeddings: the most recent ``recent_faces`` members plus the
representative face.  A new embedding joins the best-scoring person when
the cosine similarity to that centroid is strictly above the threshold;
otherwise the caller creates a new person.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

import numpy as np

from .models import FaceRecord, Person
from .vectors import centroid, cosine_similarity

MATCH_THRESHOLD = 0.45
RECENT_FACES = 25


@dataclass(frozen=True)
class MatchResult:
    person_id: str
    similarity: float


def candidate_face_ids(person: Person, recent_faces: int = RECENT_FACES) -> List[str]:
    """Return the face ids used to build ``person``'s centroid."""
    selected = list(person.face_ids[-recent_faces:]) if recent_faces > 0 else []
    rep = person.representative_face_id
    if rep is not None and rep not in selected:
        selected.append(rep)
    return selected


def person_centroid(person: Person, faces: Mapping[str, FaceRecord], dim: int,
                    recent_faces: int = RECENT_FACES) -> Optional[np.ndarray]:
    """Centroid of the comparable embeddings of ``person``.

    Only faces that exist, carry an embedding and have exactly ``dim``
    components are used.  Returns ``None`` when no face qualifies.
    """
    embeddings = []
    for face_id in candidate_face_ids(person, recent_faces):
        record = faces.get(face_id)
        if record is None or not record.has_embedding:
            continue
        if record.embedding.shape[0] != dim:
            continue
        embeddings.append(record.embedding)
    if not embeddings:
        return None
    return centroid(embeddings)


def find_match(embedding: Optional[np.ndarray], people: Iterable[Person],
               faces: Mapping[str, FaceRecord],
               threshold: float = MATCH_THRESHOLD,
               recent_faces: int = RECENT_FACES) -> Optional[MatchResult]:
    """Find the person whose centroid is most similar to ``embedding``.

    Parameters
    ----------
    embedding: ndarray or None
        Unit-normalised embedding of the new face.  ``None`` or an empty
        vector never matches.
    people: iterable of Person
        Current people, scanned in order.  Ties keep the earlier person.
    faces: mapping of face id to FaceRecord
        Lookup used to resolve member embeddings.
    threshold: float
        Similarity must be strictly greater than this value to match.
    recent_faces: int
        Number of most recent members sampled per person.

    Returns
    -------
    MatchResult or None
        Best person id and its similarity, or ``None`` if nobody qualifies.
    """
    if embedding is None:
        return None
    embedding = np.asarray(embedding).ravel()
    if embedding.size == 0:
        return None
    dim = embedding.shape[0]

    best: Optional[MatchResult] = None
    best_similarity = threshold
    for person in people:
        if not person.face_ids:
            continue
        center = person_centroid(person, faces, dim, recent_faces)
        if center is None:
            continue
        similarity = cosine_similarity(embedding, center)
        if similarity > best_similarity:
            best_similarity = similarity
            best = MatchResult(person.id, similarity)
    return best
