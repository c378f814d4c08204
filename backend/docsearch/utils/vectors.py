"""Vector serialisation and similarity helpers."""

from __future__ import annotations

from typing import Sequence

import numpy as np

VECTOR_DTYPE = "float32"


def vector_to_bytes(vector: Sequence[float] | np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def vector_from_bytes(payload: bytes, dim: int | None = None, dtype: str = VECTOR_DTYPE) -> np.ndarray:
    arr = np.frombuffer(payload, dtype=np.dtype(dtype)).astype(np.float32, copy=False)
    if dim is not None and arr.size != dim:
        raise ValueError(f"Stored vector has {arr.size} values, expected {dim}")
    return arr


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms = np.where(norms == 0, 1.0, norms)
    return matrix / norms


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between *query* (dim,) and every row of *matrix* (n, dim); zero vectors score 0."""

    if matrix.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * query_norm
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return np.clip(sims, -1.0, 1.0)
