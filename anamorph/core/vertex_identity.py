"""
Vertex identity index.

Meshes exported with UV seams carry several vertices at the same position.
They are one logical point: normals are merged across them and optimizers
move them together. Groups are built with a sort-then-bucket pass
(`np.unique`) instead of a float-keyed dictionary; `eps > 0` additionally
merges near-duplicates by snapping positions to an `eps` grid first.
"""

from __future__ import annotations

import numpy as np


def _bucket_keys(vertices: np.ndarray, eps: float) -> np.ndarray:
    v = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    if eps > 0.0:
        keys = np.round(v / float(eps))
    else:
        keys = v.copy()
    # -0.0 and 0.0 are the same position.
    keys += 0.0
    return keys


def group_labels(vertices: np.ndarray, eps: float = 0.0) -> np.ndarray:
    """
    Return a group label per vertex.

    Labels are renumbered so that groups are ordered by their first member
    (label 0 belongs to vertex 0).
    """
    v = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    if v.shape[0] == 0:
        return np.zeros((0,), dtype=np.int64)

    keys = _bucket_keys(v, float(eps))
    _, inverse = np.unique(keys, axis=0, return_inverse=True)
    inverse = np.asarray(inverse, dtype=np.int64).reshape(-1)

    # np.unique orders buckets lexicographically; reorder by first appearance.
    n_groups = int(inverse.max()) + 1
    first_seen = np.full(n_groups, v.shape[0], dtype=np.int64)
    np.minimum.at(first_seen, inverse, np.arange(v.shape[0], dtype=np.int64))
    order = np.argsort(first_seen, kind="stable")
    relabel = np.empty(n_groups, dtype=np.int64)
    relabel[order] = np.arange(n_groups, dtype=np.int64)
    return relabel[inverse]


def build_identity_groups(vertices: np.ndarray, eps: float = 0.0) -> list[np.ndarray]:
    """Group vertex indices by position; groups partition `range(len(vertices))`."""
    labels = group_labels(vertices, eps=eps)
    if labels.size == 0:
        return []
    order = np.argsort(labels, kind="stable")
    counts = np.bincount(labels)
    splits = np.cumsum(counts)[:-1]
    return [np.asarray(g, dtype=np.int64) for g in np.split(order, splits)]


class VertexIdentityIndex:
    """
    Lookup from a vertex to every vertex sharing its position.

    Attributes:
        labels: (N,) group label per vertex
        groups: list of index arrays, ordered by first member
    """

    def __init__(self, vertices: np.ndarray, eps: float = 0.0):
        self.eps = float(eps)
        self.labels = group_labels(vertices, eps=self.eps)
        self.groups = build_identity_groups(vertices, eps=self.eps) if self.labels.size else []

    @property
    def n_vertices(self) -> int:
        return int(self.labels.size)

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    def identity_of(self, index: int) -> np.ndarray:
        return self.groups[int(self.labels[int(index)])]

    def representatives(self) -> np.ndarray:
        """First member of every group."""
        return np.asarray([int(g[0]) for g in self.groups], dtype=np.int64)

    def has_duplicates(self) -> bool:
        return self.n_groups < self.n_vertices

    def is_consistent(self, positions: np.ndarray) -> bool:
        """True when every group's members share exactly the same position."""
        pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        for g in self.groups:
            if g.size > 1 and not np.all(pos[g] == pos[g[0]]):
                return False
        return True
