"""
Embedding model wrappers.

This module abstracts away the details of loading and running face
recognition models.  Every :class:`Embedder` takes an aligned BGR face crop
and returns an L2-normalised feature vector, or ``None`` when inference
fails.  A failed embedding is not an error: the face is simply recorded
without identity information.

Two backends are provided: a plain ONNX Runtime session around an ArcFace
style model, and the InsightFace ``model_zoo`` recognition wrapper (an
optional dependency).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import cv2
import numpy as np

from .vectors import normalize

logger = logging.getLogger(__name__)

INPUT_SIZE = 112


def _providers(use_gpu: bool) -> List[str]:
    """ONNX Runtime execution providers, CUDA first when requested and present."""
    import onnxruntime
    if use_gpu and "CUDAExecutionProvider" in onnxruntime.get_available_providers():
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


class Embedder:
    """Base class for all embedders."""

    def embed(self, face: np.ndarray) -> Optional[np.ndarray]:
        """Return a normalised embedding for an aligned BGR face, or ``None``."""
        raise NotImplementedError


class NullEmbedder(Embedder):
    """Embedder used when no recognition model is available."""

    def embed(self, face: np.ndarray) -> Optional[np.ndarray]:
        return None


def preprocess(face: np.ndarray, size: int = INPUT_SIZE) -> np.ndarray:
    """Convert a BGR face crop into a ``(1, 3, size, size)`` float32 tensor.

    Pixels are reordered to RGB and scaled with ``(p - 127.5) / 128``.
    """
    resized = cv2.resize(face, (size, size))
    rgb = resized[:, :, ::-1].astype(np.float32)
    rgb = (rgb - 127.5) / 128.0
    return np.ascontiguousarray(rgb.transpose(2, 0, 1)[np.newaxis, ...])


class OnnxArcFaceEmbedder(Embedder):
    """ArcFace recognition model executed with ONNX Runtime.

    Parameters
    ----------
    model_path: Path
        ONNX file of a model taking a ``1x3x112x112`` input.
    use_gpu: bool
        Whether to use CUDA if available; falls back to CPU otherwise.
    """
    def __init__(self, model_path: Path, use_gpu: bool = False) -> None:
        import onnxruntime
        model_path = Path(model_path)
        if not model_path.is_file():
            raise RuntimeError(f"Face recognition model not found at {model_path}")
        self.session = onnxruntime.InferenceSession(str(model_path), providers=_providers(use_gpu))
        inputs = self.session.get_inputs()
        self.input_name = inputs[0].name if inputs else "data"
        logger.info("Loaded face recognition model %s", model_path.name)

    def embed(self, face: np.ndarray) -> Optional[np.ndarray]:
        if face is None or face.size == 0:
            return None
        try:
            outputs = self.session.run(None, {self.input_name: preprocess(face)})
        except Exception:
            logger.exception("Face embedding inference failed")
            return None
        embedding = np.asarray(outputs[0], dtype=np.float32).ravel()
        if embedding.size == 0:
            return None
        return normalize(embedding).astype(np.float32)


class InsightFaceEmbedder(Embedder):
    """Wrapper around an InsightFace ``model_zoo`` recognition model.

    Parameters
    ----------
    model_path: Path
        ONNX recognition model file understood by ``insightface.model_zoo``.
    use_gpu: bool
        Whether to use CUDA if available; falls back to CPU otherwise.
    """
    def __init__(self, model_path: Path, use_gpu: bool = False) -> None:
        try:
            from insightface.model_zoo import get_model
        except ImportError as e:
            raise RuntimeError("InsightFace is not installed.  Install the optional dependency "
                               "with `pip install face-people[insightface]`.") from e
        model_path = Path(model_path)
        if not model_path.is_file():
            raise RuntimeError(f"Face recognition model not found at {model_path}")
        self.model = get_model(str(model_path), providers=_providers(use_gpu))
        self.model.prepare(ctx_id=0 if use_gpu else -1)

    def embed(self, face: np.ndarray) -> Optional[np.ndarray]:
        if face is None or face.size == 0:
            return None
        try:
            feat = self.model.get_feat(cv2.resize(face, (INPUT_SIZE, INPUT_SIZE)))
        except Exception:
            logger.exception("Face embedding inference failed")
            return None
        embedding = np.asarray(feat, dtype=np.float32).ravel()
        if embedding.size == 0:
            return None
        return normalize(embedding).astype(np.float32)


def get_embedder(name: str, model_path: Optional[Path] = None, use_gpu: bool = False) -> Embedder:
    """Factory function returning an embedder instance given a backend name.

    ``"none"``, or a missing model path, yields a :class:`NullEmbedder` so
    photos are still analysed and faces recorded without embeddings.
    """
    name = name.lower()
    if name == "none":
        return NullEmbedder()
    if model_path is None:
        logger.warning("No face recognition model configured; faces will not be matched")
        return NullEmbedder()
    if name == "arcface-onnx":
        return OnnxArcFaceEmbedder(model_path, use_gpu=use_gpu)
    elif name == "insightface":
        return InsightFaceEmbedder(model_path, use_gpu=use_gpu)
    raise ValueError(f"Unknown embedder {name!r}")
