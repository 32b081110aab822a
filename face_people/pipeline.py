"""
High-level orchestration of photo analysis.

This module ties together the lower-level components: detection, cropping
and alignment, embedding, incremental matching and batch clustering.  A
photo is analysed at most once.  Photos of a batch are processed in
parallel worker threads; once the whole batch has finished, every face is
re-clustered in a single exclusive step.

Failures of the external tools never propagate: a photo whose detection
fails is recorded as analysed with no faces, and a face whose embedding
fails is recorded without one.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import numpy as np

from .config import LibraryConfig
from .detection import Detector, FaceDetection, NullDetector, SubprocessDetector
from .embedders import Embedder, get_embedder
from .images import align_face, display_crop, expand_paths, is_readable_image, load_image, save_crop
from .models import FaceRecord, new_id, photo_key
from .store import FaceStore

logger = logging.getLogger(__name__)


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def build_detector(config: LibraryConfig) -> Detector:
    """Detector described by ``config``; a no-op detector if none is configured."""
    if not config.detector_command:
        logger.warning("No face detector configured; photos will be recorded without faces")
        return NullDetector()
    return SubprocessDetector(config.detector_command, timeout=config.detector_timeout)


def build_embedder(config: LibraryConfig) -> Embedder:
    return get_embedder(config.embedder_name, config.model_path, use_gpu=config.use_gpu)


def _detect(detector: Detector, path: Path, cancel: Optional[threading.Event]) -> List[FaceDetection]:
    try:
        return detector.detect(path, cancel)
    except Exception:
        logger.exception("Face detector failed on %s", path)
        return []


def _embed(embedder: Embedder, face: np.ndarray) -> Optional[np.ndarray]:
    if face is None or face.size == 0:
        return None
    try:
        return embedder.embed(face)
    except Exception:
        logger.exception("Face embedder failed")
        return None


def analyze_photo(store: FaceStore, photo_path: Path, detector: Detector, embedder: Embedder,
                  max_image_dim: int = 1600, crop_size: int = 128, aligned_size: int = 112,
                  cancel: Optional[threading.Event] = None) -> List[FaceRecord]:
    """Detect, embed and assign every face of one photo.

    Parameters
    ----------
    store: FaceStore
        Store receiving the face records and person assignments.
    photo_path: Path
        Photo to analyse.  Already analysed photos are skipped.
    detector, embedder:
        External detection and recognition capabilities.
    max_image_dim, crop_size, aligned_size: int
        Image geometry, see :class:`~face_people.config.LibraryConfig`.
    cancel: threading.Event, optional
        Checked before detection, after detection and before each face.
        Faces already recorded when cancellation is noticed are kept.

    Returns
    -------
    list of FaceRecord
        The face records created for this photo.  Empty on any failure.
    """
    try:
        return _analyze_photo(store, Path(photo_path), detector, embedder,
                              max_image_dim, crop_size, aligned_size, cancel)
    except Exception:
        logger.exception("Failed to analyse %s", photo_path)
        return []


def _analyze_photo(store: FaceStore, path: Path, detector: Detector, embedder: Embedder,
                   max_image_dim: int, crop_size: int, aligned_size: int,
                   cancel: Optional[threading.Event]) -> List[FaceRecord]:
    key = photo_key(path)
    if store.is_analyzed(key) or _cancelled(cancel):
        return []

    detections = _detect(detector, path, cancel)
    if _cancelled(cancel):
        return []
    store.mark_analyzed(key)
    if not detections:
        return []

    logger.info("Found %d faces in %s", len(detections), path.name)
    loaded = load_image(path, max_image_dim)
    if loaded is None:
        logger.warning("Could not decode %s", path)
        return []
    img, scale = loaded

    records: List[FaceRecord] = []
    for detection in detections:
        if _cancelled(cancel):
            logger.info("Analysis of %s cancelled after %d faces", path.name, len(records))
            break
        scaled = detection.scaled(scale)
        crop = display_crop(img, scaled.bounding_box, crop_size)
        if crop is None:
            continue
        embedding = _embed(embedder, align_face(img, scaled, aligned_size))

        face_id = new_id()
        crop_path = store.crop_path(face_id)
        if not save_crop(crop, crop_path):
            continue
        record = FaceRecord(
            id=face_id,
            face_image_path=str(crop_path),
            source_photo_path=key,
            bounding_box=detection.bounding_box,
            embedding=embedding,
        )
        store.add_and_match_face(record)
        records.append(record)
    return records


@dataclass
class BatchResult:
    """Summary of an :func:`analyze_library` run."""
    photos: int = 0
    analyzed: int = 0
    faces: int = 0
    people: Optional[int] = None
    cancelled: bool = False


def analyze_library(store: FaceStore, paths: Iterable[Path], detector: Detector, embedder: Embedder,
                    config: Optional[LibraryConfig] = None,
                    cancel: Optional[threading.Event] = None,
                    progress: Optional[Callable[[Path, int], None]] = None) -> BatchResult:
    """Analyse a batch of photos in parallel, then re-cluster all faces.

    ``paths`` may mix photos and folders; folders are scanned recursively.
    Clustering runs only after every worker has finished, so it never
    interleaves with incremental matching, and only if at least one photo
    was newly analysed.

    Parameters
    ----------
    progress: callable, optional
        Called as ``progress(path, n_faces)`` after each photo.
    """
    config = config or LibraryConfig()
    result = BatchResult()
    pending = []
    seen = set()
    for path in expand_paths(paths):
        result.photos += 1
        if photo_key(path) in seen or store.is_analyzed(path):
            continue
        seen.add(photo_key(path))
        if not is_readable_image(path):
            logger.warning("Skipping unreadable image %s", path)
            store.mark_analyzed(path)
            continue
        pending.append(path)

    logger.info("Analysing %d of %d photos with %d workers", len(pending), result.photos, config.workers)

    def work(path: Path) -> List[FaceRecord]:
        return analyze_photo(
            store, path, detector, embedder,
            max_image_dim=config.max_image_dim,
            crop_size=config.crop_size,
            aligned_size=config.aligned_size,
            cancel=cancel,
        )

    if pending:
        with concurrent.futures.ThreadPoolExecutor(max_workers=config.workers) as executor:
            futures = {executor.submit(work, path): path for path in pending}
            for future in concurrent.futures.as_completed(futures):
                path = futures[future]
                records = future.result()
                if store.is_analyzed(path):
                    result.analyzed += 1
                result.faces += len(records)
                if progress is not None:
                    progress(path, len(records))

    if _cancelled(cancel):
        result.cancelled = True
        logger.info("Batch cancelled; skipping clustering")
        return result
    if config.cluster_after_batch and result.analyzed:
        people = store.cluster_people(cancel)
        if people is not None:
            result.people = len(people)
    return result
