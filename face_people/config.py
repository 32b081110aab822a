"""
Configuration structures for the face identity library.

We use :class:`dataclasses.dataclass` to describe the parameters accepted by
the command line interface.  Each field corresponds to a tuning parameter or
a location on disk, with defaults matching the behaviour the matching and
clustering thresholds were tuned for.

The :func:`parse_args` function converts command line arguments into a
:class:`LibraryConfig` instance.  The requested action (analyze, cluster,
rename, ...) and its arguments are stored in ``extra``.
"""

from __future__ import annotations

import argparse
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List

DEFAULT_DATA_DIR = Path.home() / ".face_people"


@dataclass
class LibraryConfig:
    """Parameters controlling the store, the analysis and the clustering.

    Attributes
    ----------
    data_dir: Path
        Directory holding the SQLite database (``faces.sqlite``) and the
        ``faces`` folder of crop images.
    match_threshold: float
        Cosine similarity a new face must strictly exceed against a person's
        centroid to join that person.
    recent_faces: int
        Number of most recent faces of a person used to build its centroid
        (the representative face is always added).
    cluster_eps: float
        DBSCAN radius, as maximum cosine distance between neighbours.
    cluster_min_pts: int
        DBSCAN minimum neighbourhood size (the point itself included).
    max_image_dim: int
        Photos are downscaled so that neither side exceeds this many pixels
        before cropping and alignment.
    crop_size: int
        Side length of the square crop image stored for every face.
    aligned_size: int
        Side length of the aligned face passed to the embedder.
    detector_command: list of str, optional
        Executable (and leading arguments) of the external face detector.
        The photo path is appended as the last argument.
    detector_timeout: float
        Seconds to wait for the detector before giving up on a photo.
    embedder_name: str
        ``"arcface-onnx"`` (default), ``"insightface"`` or ``"none"``.
    model_path: Path, optional
        ONNX recognition model used by the embedder.
    use_gpu: bool
        Request CUDA execution when the runtime supports it.
    workers: int
        Number of photos analysed in parallel.
    cluster_after_batch: bool
        Re-cluster all faces once a batch of photos has been analysed.
    verbose: bool
        Enable debug logging.
    """
    data_dir: Path = DEFAULT_DATA_DIR
    match_threshold: float = 0.45
    recent_faces: int = 25
    cluster_eps: float = 0.65
    cluster_min_pts: int = 1
    max_image_dim: int = 1600
    crop_size: int = 128
    aligned_size: int = 112
    detector_command: Optional[List[str]] = None
    detector_timeout: float = 3.0
    embedder_name: str = "arcface-onnx"
    model_path: Optional[Path] = None
    use_gpu: bool = False
    workers: int = 4
    cluster_after_batch: bool = True
    verbose: bool = False
    # Requested action and its arguments
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "faces.sqlite"

    @property
    def faces_dir(self) -> Path:
        return Path(self.data_dir) / "faces"


def parse_args(argv: Optional[list[str]] = None) -> LibraryConfig:
    """Parse command line arguments and return a :class:`LibraryConfig` instance.

    Parameters
    ----------
    argv: list of str, optional
        List of command line arguments.  If omitted, :mod:`sys.argv` will be
        used.  This parameter facilitates testing.

    Returns
    -------
    LibraryConfig
        Populated configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Face identity management for a photo library",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--data-dir", dest="data_dir", type=Path, default=DEFAULT_DATA_DIR,
                        help="Directory holding the face database and crop images")

    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument("--analyze", dest="analyze", type=Path, nargs="+", metavar="PATH",
                         help="Photos or folders of photos to analyse")
    actions.add_argument("--cluster", dest="cluster", action="store_true",
                         help="Re-cluster every face into people")
    actions.add_argument("--list", dest="list_people", action="store_true",
                         help="List people and their face counts")
    actions.add_argument("--rename", dest="rename", nargs=2, metavar=("PERSON_ID", "NAME"),
                         help="Rename a person")
    actions.add_argument("--merge", dest="merge", nargs=2, metavar=("SOURCE_ID", "TARGET_ID"),
                         help="Move all faces of SOURCE_ID into TARGET_ID")
    actions.add_argument("--delete", dest="delete", metavar="PERSON_ID",
                         help="Delete a person (its faces are kept)")
    actions.add_argument("--purge", dest="purge", action="store_true",
                         help="Delete all faces, people, analysis markers and favourites")
    actions.add_argument("--favorite", dest="favorite", type=Path, metavar="PHOTO",
                         help="Toggle the favourite flag of a photo")
    actions.add_argument("--export-embeddings", dest="export", type=Path, metavar="PARQUET",
                         help="Write all face embeddings to a Parquet file")

    parser.add_argument("--detector", dest="detector_command", type=str, default=None,
                        help="External face detector command line; the photo path is appended")
    parser.add_argument("--detector-timeout", dest="detector_timeout", type=float, default=3.0,
                        help="Seconds to wait for the detector per photo")
    parser.add_argument("--embedder", dest="embedder_name", type=str, default="arcface-onnx",
                        choices=["arcface-onnx", "insightface", "none"],
                        help="Embedding backend")
    parser.add_argument("--model", dest="model_path", type=Path, default=None,
                        help="Path to the ONNX face recognition model")
    parser.add_argument("--gpu", dest="use_gpu", action="store_true",
                        help="Use CUDA for inference when available")
    parser.add_argument("--workers", dest="workers", type=int, default=4,
                        help="Number of photos analysed in parallel")
    parser.add_argument("--no-cluster", dest="no_cluster", action="store_true",
                        help="Do not re-cluster after analysing a batch of photos")
    parser.add_argument("--match-threshold", dest="match_threshold", type=float, default=0.45,
                        help="Cosine similarity needed to join an existing person")
    parser.add_argument("--recent-faces", dest="recent_faces", type=int, default=25,
                        help="Recent faces per person used for its centroid")
    parser.add_argument("--eps", dest="cluster_eps", type=float, default=0.65,
                        help="DBSCAN radius (cosine distance)")
    parser.add_argument("--min-pts", dest="cluster_min_pts", type=int, default=1,
                        help="DBSCAN minimum neighbourhood size")
    parser.add_argument("--max-image-dim", dest="max_image_dim", type=int, default=1600,
                        help="Downscale photos so no side exceeds this many pixels")
    parser.add_argument("--crop-size", dest="crop_size", type=int, default=128,
                        help="Side length of stored face crops")
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true",
                        help="Enable debug logging")
    args = parser.parse_args(argv)

    if args.analyze:
        extra: Dict[str, Any] = {"action": "analyze", "paths": list(args.analyze)}
    elif args.cluster:
        extra = {"action": "cluster"}
    elif args.list_people:
        extra = {"action": "list"}
    elif args.rename:
        extra = {"action": "rename", "person_id": args.rename[0], "name": args.rename[1]}
    elif args.merge:
        extra = {"action": "merge", "source_id": args.merge[0], "target_id": args.merge[1]}
    elif args.delete:
        extra = {"action": "delete", "person_id": args.delete}
    elif args.purge:
        extra = {"action": "purge"}
    elif args.favorite:
        extra = {"action": "favorite", "path": args.favorite}
    else:
        extra = {"action": "export", "path": args.export}

    if args.workers < 1:
        parser.error("--workers must be at least 1")

    return LibraryConfig(
        data_dir=args.data_dir,
        match_threshold=args.match_threshold,
        recent_faces=args.recent_faces,
        cluster_eps=args.cluster_eps,
        cluster_min_pts=args.cluster_min_pts,
        max_image_dim=args.max_image_dim,
        crop_size=args.crop_size,
        detector_command=shlex.split(args.detector_command) if args.detector_command else None,
        detector_timeout=args.detector_timeout,
        embedder_name=args.embedder_name,
        model_path=args.model_path,
        use_gpu=args.use_gpu,
        workers=args.workers,
        cluster_after_batch=not args.no_cluster,
        verbose=args.verbose,
        extra=extra,
    )
