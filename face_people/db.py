"""
Database layer for the face identity store.

All four persisted sets (faces, people, analyzed photos and favourites) live
in a single SQLite file so that every mutation can be written in one
transaction.  The tables are created automatically when connecting.

Helpers in this module take an open :class:`~sqlalchemy.engine.Connection`
and never commit on their own; callers wrap them in ``engine.begin()`` so a
multi-table change is applied atomically.  All interactions use SQLAlchemy
Core.
"""

from __future__ import annotations

import datetime as _dt
import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set

import numpy as np
from sqlalchemy import (
    Table, Column, Integer, String, Text, DateTime, MetaData, ForeignKey,
    create_engine, select, insert, update, delete, func
)
from sqlalchemy.engine import Engine, Connection

from .models import BoundingBox, FaceRecord, Person

logger = logging.getLogger(__name__)

ANALYZED = "analyzed_photos"
FAVORITES = "favorites"


def _make_metadata() -> MetaData:
    """Define and return SQLAlchemy metadata with our table definitions."""
    metadata = MetaData()
    # One row per detected face; ``position`` keeps discovery order
    Table(
        "faces", metadata,
        Column("id", String, primary_key=True),
        Column("position", Integer, nullable=False),
        Column("face_image_path", String, nullable=False),
        Column("source_photo_path", String, nullable=False, index=True),
        Column("bbox_x", Integer, nullable=False),
        Column("bbox_y", Integer, nullable=False),
        Column("bbox_width", Integer, nullable=False),
        Column("bbox_height", Integer, nullable=False),
        # JSON list of floats, decoded per row so one bad value cannot block loading
        Column("embedding", Text, nullable=True),
        Column("created_at", DateTime, nullable=False),
    )
    Table(
        "people", metadata,
        Column("id", String, primary_key=True),
        Column("position", Integer, nullable=False),
        Column("name", String, nullable=False),
        Column("representative_face_id", String, nullable=True),
    )
    # Ordered membership; faces are referenced, never owned
    Table(
        "person_faces", metadata,
        Column("person_id", String, ForeignKey("people.id"), primary_key=True),
        Column("position", Integer, primary_key=True),
        Column("face_id", String, ForeignKey("faces.id"), nullable=False),
    )
    Table(
        ANALYZED, metadata,
        Column("path", String, primary_key=True),
        Column("created_at", DateTime, nullable=False),
    )
    Table(
        FAVORITES, metadata,
        Column("path", String, primary_key=True),
        Column("created_at", DateTime, nullable=False),
    )
    return metadata


_METADATA = _make_metadata()


def _table(name: str) -> Table:
    return _METADATA.tables[name]


def _now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def init_db(db_path: Path) -> Engine:
    """Initialize the database and create tables if they do not exist.

    Parameters
    ----------
    db_path: Path
        Location of the SQLite database file.  Parent directories are
        created when missing.

    Returns
    -------
    sqlalchemy.Engine
        Connected engine instance.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    _METADATA.create_all(engine)
    return engine


def _encode_embedding(embedding: Optional[np.ndarray]) -> Optional[str]:
    if embedding is None:
        return None
    return json.dumps([float(x) for x in np.asarray(embedding).ravel()])


def _decode_embedding(face_id: str, value: Any) -> Optional[np.ndarray]:
    if value is None:
        return None
    try:
        return np.asarray(json.loads(value), dtype=np.float32).ravel()
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable embedding stored for face %s", face_id)
        return None


def _next_position(conn: Connection, table: Table) -> int:
    current = conn.execute(select(func.max(table.c.position))).scalar()
    return 0 if current is None else int(current) + 1


def load_faces(conn: Connection) -> List[FaceRecord]:
    """Return all face records in discovery order."""
    faces = _table("faces")
    rows = conn.execute(select(faces).order_by(faces.c.position)).mappings().all()
    return [
        FaceRecord(
            id=row["id"],
            face_image_path=row["face_image_path"],
            source_photo_path=row["source_photo_path"],
            bounding_box=BoundingBox(
                row["bbox_x"], row["bbox_y"], row["bbox_width"], row["bbox_height"]
            ),
            embedding=_decode_embedding(row["id"], row["embedding"]),
        )
        for row in rows
    ]


def load_people(conn: Connection) -> List[Person]:
    """Return all people in list order, with their ordered face ids."""
    people = _table("people")
    person_faces = _table("person_faces")
    members = {}
    for row in conn.execute(
        select(person_faces).order_by(person_faces.c.person_id, person_faces.c.position)
    ).mappings():
        members.setdefault(row["person_id"], []).append(row["face_id"])
    rows = conn.execute(select(people).order_by(people.c.position)).mappings().all()
    return [
        Person(
            id=row["id"],
            name=row["name"],
            face_ids=members.get(row["id"], []),
            representative_face_id=row["representative_face_id"],
        )
        for row in rows
    ]


def load_paths(conn: Connection, table_name: str) -> Set[str]:
    """Return the set of paths stored in ``analyzed_photos`` or ``favorites``."""
    table = _table(table_name)
    return {row[0] for row in conn.execute(select(table.c.path))}


def insert_face(conn: Connection, record: FaceRecord) -> None:
    faces = _table("faces")
    box = record.bounding_box
    conn.execute(
        insert(faces).values(
            id=record.id,
            position=_next_position(conn, faces),
            face_image_path=record.face_image_path,
            source_photo_path=record.source_photo_path,
            bbox_x=int(box.x),
            bbox_y=int(box.y),
            bbox_width=int(box.width),
            bbox_height=int(box.height),
            embedding=_encode_embedding(record.embedding),
            created_at=_now(),
        )
    )


def insert_person(conn: Connection, person: Person) -> None:
    """Insert a person row followed by its membership rows."""
    people = _table("people")
    conn.execute(
        insert(people).values(
            id=person.id,
            position=_next_position(conn, people),
            name=person.name,
            representative_face_id=person.representative_face_id,
        )
    )
    append_person_faces(conn, person.id, person.face_ids)


def append_person_faces(conn: Connection, person_id: str, face_ids: Iterable[str]) -> None:
    """Append ``face_ids`` after the existing members of ``person_id``."""
    person_faces = _table("person_faces")
    start = conn.execute(
        select(func.max(person_faces.c.position)).where(person_faces.c.person_id == person_id)
    ).scalar()
    start = 0 if start is None else int(start) + 1
    rows = [
        {"person_id": person_id, "position": start + offset, "face_id": face_id}
        for offset, face_id in enumerate(face_ids)
    ]
    if rows:
        conn.execute(insert(person_faces), rows)


def update_person_name(conn: Connection, person_id: str, name: str) -> None:
    people = _table("people")
    conn.execute(update(people).where(people.c.id == person_id).values(name=name))


def delete_person(conn: Connection, person_id: str) -> None:
    """Remove a person and its membership rows.  Face rows are kept."""
    person_faces = _table("person_faces")
    people = _table("people")
    conn.execute(delete(person_faces).where(person_faces.c.person_id == person_id))
    conn.execute(delete(people).where(people.c.id == person_id))


def replace_people(conn: Connection, new_people: Iterable[Person]) -> None:
    """Drop every person and insert ``new_people`` in order."""
    conn.execute(delete(_table("person_faces")))
    conn.execute(delete(_table("people")))
    for person in new_people:
        insert_person(conn, person)


def insert_path(conn: Connection, table_name: str, path: str) -> None:
    conn.execute(insert(_table(table_name)).values(path=path, created_at=_now()))


def delete_path(conn: Connection, table_name: str, path: str) -> None:
    table = _table(table_name)
    conn.execute(delete(table).where(table.c.path == path))


def clear_all(conn: Connection) -> None:
    """Delete every row from every table, children first."""
    for table in reversed(_METADATA.sorted_tables):
        conn.execute(delete(table))
