"""
Top-level package for face identity management in a photo library.

Faces found in photos are assigned to persistent *people* as they arrive,
and the whole population is periodically re-clustered.

The functionality is organised into smaller modules:

- :mod:`face_people.config` – dataclass for configuration and the argument parser.
- :mod:`face_people.models` – face record and person dataclasses.
- :mod:`face_people.vectors` – normalisation, cosine similarity and centroids.
- :mod:`face_people.db` – SQLite schema and helpers for the persisted sets.
- :mod:`face_people.store` – the lock-guarded, write-through store of faces and people.
- :mod:`face_people.matching` – incremental assignment of new faces to people.
- :mod:`face_people.clustering` – DBSCAN rebuild of all people.
- :mod:`face_people.detection` – boundary to the external face detector.
- :mod:`face_people.embedders` – wrappers around ONNX Runtime and InsightFace recognition models.
- :mod:`face_people.images` – scanning photo folders, cropping and aligning faces.
- :mod:`face_people.pipeline` – per-photo and batch analysis, tying together all modules.
- :mod:`face_people.embeddings_io` – Parquet export of the embedding population.

You can drive the library from the command line using the ``face-people``
script installed by this package.
"""

__all__ = [
    "config",
    "models",
    "vectors",
    "db",
    "store",
    "matching",
    "clustering",
    "detection",
    "embedders",
    "images",
    "pipeline",
    "embeddings_io",
]
