"""
The face identity store.

:class:`FaceStore` is the single handle through which faces, people, the
analyzed-photo set and the favourites set are read and changed.  It loads
everything from the SQLite file once, keeps it in memory, and writes every
change through to disk before returning.

A single re-entrant lock guards all four sets.  Every public method holds
it for its full duration, including the database transaction, so no reader
can observe a half-applied change.  Database writes happen first; the
in-memory state is updated only once the transaction has committed.

Photos are keyed by their absolute, symlink-resolved path (see
:func:`~face_people.models.photo_key`), so a photo reached through
different spellings of its path is analysed only once.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Union

from sqlalchemy.engine import Connection

from . import db
from .clustering import CLUSTER_EPS, CLUSTER_MIN_PTS, build_people, cluster_embeddings
from .config import LibraryConfig
from .matching import MATCH_THRESHOLD, RECENT_FACES, find_match
from .models import DEFAULT_PERSON_NAME, FaceRecord, Person, photo_key

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class FaceStore:
    """In-memory view of the persisted face identity data.

    Parameters
    ----------
    db_path: Path
        SQLite database file.  Created if missing.
    faces_dir: Path
        Directory holding the face crop images owned by the store.
    match_threshold: float
        Minimum (exclusive) centroid similarity for incremental matches.
    recent_faces: int
        Number of most recent faces sampled per person when matching.
    cluster_eps, cluster_min_pts:
        DBSCAN parameters used by :meth:`cluster_people`.
    """

    def __init__(self, db_path: Path, faces_dir: Path,
                 match_threshold: float = MATCH_THRESHOLD,
                 recent_faces: int = RECENT_FACES,
                 cluster_eps: float = CLUSTER_EPS,
                 cluster_min_pts: int = CLUSTER_MIN_PTS) -> None:
        self.db_path = Path(db_path)
        self.faces_dir = Path(faces_dir)
        self.match_threshold = match_threshold
        self.recent_faces = recent_faces
        self.cluster_eps = cluster_eps
        self.cluster_min_pts = cluster_min_pts

        self._lock = threading.RLock()
        self._faces: Dict[str, FaceRecord] = {}
        self._people: List[Person] = []
        self._analyzed: Set[str] = set()
        self._favorites: Set[str] = set()

        self.faces_dir.mkdir(parents=True, exist_ok=True)
        self._engine = db.init_db(self.db_path)
        self._load()

    @classmethod
    def from_config(cls, config: LibraryConfig) -> "FaceStore":
        return cls(
            db_path=config.db_path,
            faces_dir=config.faces_dir,
            match_threshold=config.match_threshold,
            recent_faces=config.recent_faces,
            cluster_eps=config.cluster_eps,
            cluster_min_pts=config.cluster_min_pts,
        )

    def __enter__(self) -> "FaceStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._engine.dispose()

    def _load(self) -> None:
        with self._lock:
            with self._engine.connect() as conn:
                faces = db.load_faces(conn)
                self._people = db.load_people(conn)
                self._analyzed = db.load_paths(conn, db.ANALYZED)
                self._favorites = db.load_paths(conn, db.FAVORITES)
            self._faces = {face.id: face for face in faces}
        logger.debug(
            "Loaded %d faces, %d people, %d analyzed photos from %s",
            len(self._faces), len(self._people), len(self._analyzed), self.db_path,
        )

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """Hold the store lock and open a write transaction.

        The transaction commits when the block exits without error and rolls
        back otherwise.  Callers apply their in-memory change after the
        block, still under the lock.
        """
        with self._lock:
            with self._engine.begin() as conn:
                yield conn

    def _find_person(self, person_id: str) -> Optional[Person]:
        for person in self._people:
            if person.id == person_id:
                return person
        return None

    # Face records

    def crop_path(self, face_id: str) -> Path:
        """Location of the crop image for ``face_id``."""
        return self.faces_dir / f"{face_id}.jpg"

    def add_face(self, record: FaceRecord) -> None:
        """Record a face without assigning it to anybody."""
        with self._lock:
            if record.id in self._faces:
                raise ValueError(f"Face {record.id} already exists")
            with self._transaction() as conn:
                db.insert_face(conn, record)
            self._faces[record.id] = record

    def get_face(self, face_id: str) -> Optional[FaceRecord]:
        with self._lock:
            return self._faces.get(face_id)

    def list_faces(self) -> List[FaceRecord]:
        with self._lock:
            return list(self._faces.values())

    def faces_for_person(self, face_ids: Iterable[str]) -> List[FaceRecord]:
        """Resolve ``face_ids`` to records, skipping unknown ids."""
        with self._lock:
            return [self._faces[fid] for fid in face_ids if fid in self._faces]

    def has_faces_for_photo(self, photo_path: PathLike) -> bool:
        keys = {str(photo_path), photo_key(photo_path)}
        with self._lock:
            return any(face.source_photo_path in keys for face in self._faces.values())

    def mark_analyzed(self, photo_path: PathLike) -> None:
        key = photo_key(photo_path)
        with self._lock:
            if key in self._analyzed:
                return
            with self._transaction() as conn:
                db.insert_path(conn, db.ANALYZED, key)
            self._analyzed.add(key)

    def is_analyzed(self, photo_path: PathLike) -> bool:
        with self._lock:
            return photo_key(photo_path) in self._analyzed

    def purge_all(self) -> None:
        """Forget every face, person, analyzed photo and favourite.

        Crop files are deleted on a best-effort basis; a file that cannot
        be removed does not stop the purge.
        """
        with self._lock:
            with self._transaction() as conn:
                db.clear_all(conn)
            self._faces = {}
            self._people = []
            self._analyzed = set()
            self._favorites = set()
            removed = 0
            if self.faces_dir.is_dir():
                for path in self.faces_dir.iterdir():
                    try:
                        if path.is_file():
                            path.unlink()
                            removed += 1
                    except OSError as exc:
                        logger.debug("Could not delete %s: %s", path, exc)
        logger.info("Purged face database (%d crop files removed)", removed)

    # Favourites

    def is_favorite(self, photo_path: PathLike) -> bool:
        with self._lock:
            return photo_key(photo_path) in self._favorites

    def toggle_favorite(self, photo_path: PathLike) -> bool:
        """Flip the favourite flag of a photo and return the new state."""
        key = photo_key(photo_path)
        with self._lock:
            favorite = key in self._favorites
            with self._transaction() as conn:
                if favorite:
                    db.delete_path(conn, db.FAVORITES, key)
                else:
                    db.insert_path(conn, db.FAVORITES, key)
            if favorite:
                self._favorites.discard(key)
            else:
                self._favorites.add(key)
            return not favorite

    def list_favorites(self) -> List[str]:
        with self._lock:
            return sorted(self._favorites)

    # People

    def list_people(self) -> List[Person]:
        with self._lock:
            return [person.copy() for person in self._people]

    def get_person(self, person_id: str) -> Optional[Person]:
        with self._lock:
            person = self._find_person(person_id)
            return person.copy() if person else None

    def faces_of_person(self, person_id: str) -> List[FaceRecord]:
        with self._lock:
            person = self._find_person(person_id)
            if person is None:
                return []
            return self.faces_for_person(person.face_ids)

    def add_and_match_face(self, record: FaceRecord) -> Optional[str]:
        """Record a new face and assign it to a person.

        The face joins the best matching existing person, or starts a new
        one.  A face without an embedding is recorded but never assigned.

        Returns
        -------
        str or None
            Id of the person the face was assigned to.
        """
        with self._lock:
            if record.id in self._faces:
                raise ValueError(f"Face {record.id} already exists")
            if not record.has_embedding:
                self.add_face(record)
                return None

            match = find_match(
                record.embedding, self._people, self._faces,
                threshold=self.match_threshold, recent_faces=self.recent_faces,
            )
            new_person = None
            with self._transaction() as conn:
                db.insert_face(conn, record)
                if match is not None:
                    db.append_person_faces(conn, match.person_id, [record.id])
                else:
                    new_person = Person(
                        name=DEFAULT_PERSON_NAME,
                        face_ids=[record.id],
                        representative_face_id=record.id,
                    )
                    db.insert_person(conn, new_person)

            self._faces[record.id] = record
            if match is not None:
                self._find_person(match.person_id).face_ids.append(record.id)
                logger.debug("Face %s matched person %s (similarity %.3f)",
                             record.id, match.person_id, match.similarity)
                return match.person_id
            self._people.append(new_person)
            logger.debug("Face %s started new person %s", record.id, new_person.id)
            return new_person.id

    def rename_person(self, person_id: str, new_name: str) -> bool:
        with self._lock:
            person = self._find_person(person_id)
            if person is None:
                return False
            with self._transaction() as conn:
                db.update_person_name(conn, person_id, new_name)
            person.name = new_name
            return True

    def delete_person(self, person_id: str) -> bool:
        """Remove a person.  Its faces stay in the store for re-clustering."""
        with self._lock:
            person = self._find_person(person_id)
            if person is None:
                return False
            with self._transaction() as conn:
                db.delete_person(conn, person_id)
            self._people.remove(person)
            return True

    def merge_people(self, source_id: str, target_id: str) -> bool:
        """Move every face of ``source_id`` to the end of ``target_id``.

        The target keeps its name and representative face; the source is
        removed.
        """
        if source_id == target_id:
            return False
        with self._lock:
            source = self._find_person(source_id)
            target = self._find_person(target_id)
            if source is None or target is None:
                return False
            with self._transaction() as conn:
                db.append_person_faces(conn, target_id, source.face_ids)
                db.delete_person(conn, source_id)
            target.face_ids.extend(source.face_ids)
            self._people.remove(source)
            return True

    def cluster_people(self, cancel: Optional[threading.Event] = None) -> Optional[List[Person]]:
        """Rebuild every person from a full clustering of all embeddings.

        Names given by the user survive when a new cluster shares faces with
        a previously named person.  Person ids and representative faces are
        regenerated.  The store lock is held for the whole run, so no
        incremental match can interleave.

        Returns
        -------
        list of Person or None
            The new people, or ``None`` if there was nothing to cluster or
            the run was cancelled (the person list is then unchanged).
        """
        with self._lock:
            valid = [face for face in self._faces.values() if face.has_embedding]
            if not valid:
                logger.info("No faces with embeddings to cluster")
                return None
            logger.info("Clustering %d faces (eps=%.2f, min_pts=%d)",
                        len(valid), self.cluster_eps, self.cluster_min_pts)
            clusters = cluster_embeddings(
                [face.embedding for face in valid],
                eps=self.cluster_eps, min_pts=self.cluster_min_pts, cancel=cancel,
            )
            if clusters is None:
                logger.info("Clustering cancelled; people left unchanged")
                return None
            new_people = build_people(clusters, [face.id for face in valid], self._people)
            with self._transaction() as conn:
                db.replace_people(conn, new_people)
            self._people = new_people
            logger.info("Clustering finished with %d people", len(new_people))
            return [person.copy() for person in new_people]
