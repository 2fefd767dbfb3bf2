from __future__ import annotations

from typing import Sequence

import numpy as np

# pip install faiss-cpu
import faiss

from notememory.errors import StorageError


def l2_normalize(v: np.ndarray) -> np.ndarray:
    # v: (n, d)
    norms = np.linalg.norm(v, axis=1, keepdims=True) + 1e-12
    return v / norms


def to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="float32").tobytes()


def from_blob(blob: bytes, dimension: int) -> np.ndarray:
    if len(blob) != dimension * 4:
        raise StorageError(f"stored vector has {len(blob)} bytes, expected {dimension} float32 values")
    return np.frombuffer(blob, dtype="float32")


def new_index(dimension: int) -> faiss.Index:
    # cosine == inner product when normalized; ids are sqlite rowids
    return faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))


def build_index(dimension: int, ids: Sequence[int], vectors: Sequence[Sequence[float]]) -> faiss.Index:
    index = new_index(dimension)
    if len(ids):
        arr = l2_normalize(np.array(vectors, dtype="float32").reshape(len(ids), dimension))
        index.add_with_ids(arr, np.array(ids, dtype="int64"))
    return index


def remove(index: faiss.Index, rowid: int) -> int:
    return int(index.remove_ids(np.array([rowid], dtype="int64")))


def upsert(index: faiss.Index, rowid: int, vector: Sequence[float]) -> None:
    remove(index, rowid)
    arr = l2_normalize(np.array([vector], dtype="float32"))
    index.add_with_ids(arr, np.array([rowid], dtype="int64"))


def query(index: faiss.Index, query_vector: Sequence[float], top_k: int = 5) -> tuple[list[float], list[int]]:
    k = min(int(top_k), index.ntotal)
    if k <= 0:
        return [], []
    q = np.array([query_vector], dtype="float32")
    q = l2_normalize(q)
    scores, ids = index.search(q, k)
    return scores[0].tolist(), ids[0].tolist()
