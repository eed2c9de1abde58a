"""Vector helpers shared by the analysis pipelines.

Embeddings are stored as little-endian float32 blobs, cluster centroids as
float64 blobs so repeated averaging does not drift.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from hive_analysis.core.errors import CollaboratorContractError

EMBEDDING_DTYPE = np.dtype("<f4")
CENTROID_DTYPE = np.dtype("<f8")


def pack_vector(vector: Sequence[float] | np.ndarray, dtype: np.dtype = EMBEDDING_DTYPE) -> bytes:
    return np.asarray(vector, dtype=dtype).tobytes()


def unpack_vector(blob: bytes, dim: int, dtype: np.dtype = EMBEDDING_DTYPE) -> np.ndarray:
    arr = np.frombuffer(blob, dtype=dtype).astype(float)
    if arr.shape[0] != dim:
        raise ValueError(f"stored vector has {arr.shape[0]} values, expected {dim}")
    return arr


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    """Row-normalise ``matrix``; zero rows are left as zeros."""

    if matrix.size == 0:
        return matrix.astype(float)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    return 1.0 - cosine_similarity(a, b)


def as_matrix(vectors: Sequence[Sequence[float]], *, expected_rows: int) -> np.ndarray:
    """Coerce collaborator output to a 2D float matrix with one row per input."""

    matrix = np.asarray(vectors, dtype=float)
    if expected_rows == 0:
        return matrix.reshape(0, matrix.shape[1] if matrix.ndim == 2 else 0)
    if matrix.ndim != 2 or matrix.shape[0] != expected_rows:
        raise CollaboratorContractError(
            "Embedding batch does not match input",
            {"expected": expected_rows, "shape": tuple(matrix.shape)},
        )
    if not np.all(np.isfinite(matrix)):
        raise CollaboratorContractError("Embedding batch contains non-finite values")
    return matrix
