"""
Parquet export of the face embedding population.

A snapshot of every face record, the person it currently belongs to and its
embedding can be written to a single Parquet file.  This is handy for
offline analysis such as sweeping clustering radii without touching the
live store.

We use PyArrow's Parquet support to write and read these files.
Embeddings are stored as lists of floats in an ``embedding`` column; faces
without an embedding have an empty list.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from .store import FaceStore

COLUMNS = [
    "face_id", "source_photo_path", "bbox_x", "bbox_y", "bbox_width", "bbox_height",
    "person_id", "embedding",
]


def embedding_records(store: FaceStore) -> List[Dict[str, Any]]:
    """One serialisable dict per face record, in discovery order."""
    owner = {}
    for person in store.list_people():
        for face_id in person.face_ids:
            owner.setdefault(face_id, person.id)
    records = []
    for face in store.list_faces():
        box = face.bounding_box
        records.append({
            "face_id": face.id,
            "source_photo_path": face.source_photo_path,
            "bbox_x": box.x,
            "bbox_y": box.y,
            "bbox_width": box.width,
            "bbox_height": box.height,
            "person_id": owner.get(face.id),
            "embedding": face.embedding.tolist() if face.has_embedding else [],
        })
    return records


def write_embeddings(store: FaceStore, path: Path) -> int:
    """Write all face records of ``store`` to a Parquet file.

    Returns
    -------
    int
        Number of rows written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(embedding_records(store), columns=COLUMNS)
    table = pa.Table.from_pandas(df, preserve_index=False)
    pq.write_table(table, path)
    return len(df)


def read_embeddings(path: Path) -> pd.DataFrame:
    """Read a file written by :func:`write_embeddings`.

    The ``embedding`` column holds float32 arrays; faces without an
    embedding hold ``None``.
    """
    df = pq.read_table(Path(path)).to_pandas()
    if "embedding" in df.columns:
        df["embedding"] = [
            np.asarray(value, dtype=np.float32) if value is not None and len(value) else None
            for value in df["embedding"]
        ]
    return df
