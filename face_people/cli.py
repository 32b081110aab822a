"""
Command-line entry point for the face identity library.

This module parses command line arguments, constructs a
:class:`LibraryConfig` object, opens the store and dispatches the requested
action.
"""

from __future__ import annotations

import logging
import sys

from .config import LibraryConfig, parse_args
from .embeddings_io import write_embeddings
from .pipeline import analyze_library, build_detector, build_embedder
from .store import FaceStore

logger = logging.getLogger("face_people")


def _gpu_preflight() -> None:
    """Best-effort check for ONNX Runtime GPU availability and provide guidance.

    This does not stop execution; it only warns when CUDA is not available so
    users know how to enable GPU acceleration.
    """
    import onnxruntime as ort

    providers = set(ort.get_available_providers())
    if "CUDAExecutionProvider" not in providers:
        msg = (
            "GPU not detected by ONNX Runtime; falling back to CPU.\n"
            "To enable GPU: uninstall CPU onnxruntime and install CUDA build:\n"
            "  pip uninstall -y onnxruntime && pip install onnxruntime-gpu\n"
            "Verify with: python -c 'import onnxruntime as o; print(o.get_available_providers())'"
        )
        print(msg, file=sys.stderr)


def _print_people(store: FaceStore) -> None:
    people = store.list_people()
    if not people:
        print("No people.")
        return
    for person in people:
        print(f"{person.id}\t{person.name}\t{len(person.face_ids)} faces")


def run(cfg: LibraryConfig) -> int:
    """Execute the action stored in ``cfg.extra`` and return an exit status."""
    action = cfg.extra.get("action")
    with FaceStore.from_config(cfg) as store:
        if action == "analyze":
            if cfg.use_gpu:
                _gpu_preflight()
            result = analyze_library(
                store, cfg.extra["paths"], build_detector(cfg), build_embedder(cfg), config=cfg,
                progress=lambda path, n: logger.debug("%s: %d faces", path, n),
            )
            print(f"Photos: {result.photos}, newly analysed: {result.analyzed}, faces: {result.faces}")
            if result.people is not None:
                print(f"People after clustering: {result.people}")
        elif action == "cluster":
            people = store.cluster_people()
            print(f"People after clustering: {len(people) if people is not None else len(store.list_people())}")
        elif action == "list":
            _print_people(store)
        elif action == "rename":
            if not store.rename_person(cfg.extra["person_id"], cfg.extra["name"]):
                print(f"No person {cfg.extra['person_id']}", file=sys.stderr)
                return 1
        elif action == "merge":
            if not store.merge_people(cfg.extra["source_id"], cfg.extra["target_id"]):
                print("Nothing merged: unknown or identical person ids", file=sys.stderr)
                return 1
        elif action == "delete":
            if not store.delete_person(cfg.extra["person_id"]):
                print(f"No person {cfg.extra['person_id']}", file=sys.stderr)
                return 1
        elif action == "purge":
            store.purge_all()
        elif action == "favorite":
            state = store.toggle_favorite(cfg.extra["path"])
            print(f"{cfg.extra['path']}: {'favourite' if state else 'not favourite'}")
        elif action == "export":
            rows = write_embeddings(store, cfg.extra["path"])
            print(f"Wrote {rows} faces to {cfg.extra['path']}")
        else:
            raise ValueError(f"Unknown action {action!r}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point called by the ``face-people`` script."""
    cfg = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if cfg.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(run(cfg))


if __name__ == "__main__":
    main(sys.argv[1:])
