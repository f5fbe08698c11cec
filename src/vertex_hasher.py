"""
Vertex deduplication by hashing attribute tuples.

Two modes are supported:

1. Exact mode (``epsilon=None``): a vertex matches a registered vertex only
   if every component is bit-for-bit equal.  Used when welding corners that
   were produced by the same code path, e.g. within one render submesh.
2. Approximate mode: a vertex matches a registered vertex if every component
   differs by less than ``epsilon``.  Candidates come from a
   ``scipy.spatial.cKDTree`` ball query in the Chebyshev (max-abs) metric.
   Used when welding positions of independently generated meshes, where
   ``add_all`` welds a whole buffer with one tree per call.

In both modes the first registered match (lowest index) wins, so the output
is deterministic for a given insertion order.
"""
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree


class VertexHasher:
    """Assigns ascending output indices to unique vertex attribute tuples."""

    def __init__(self, components: int = 3, epsilon: Optional[float] = None):
        if components <= 0:
            raise ValueError(f"components must be positive, got {components}")
        if epsilon is not None and epsilon <= 0.0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")

        self.components = components
        self.epsilon = epsilon
        self._values: List[Tuple[float, ...]] = []
        self._exact: Dict[Tuple[float, ...], int] = {}
        # tree over self._values, rebuilt lazily after registrations
        self._tree: Optional[cKDTree] = None

    def __len__(self) -> int:
        return len(self._values)

    @property
    def is_approximate(self) -> bool:
        return self.epsilon is not None

    def find(self, values: Sequence[float]) -> Optional[int]:
        """Return the index of a matching registered vertex, or None."""
        key = self._make_key(values)
        if self.epsilon is None:
            return self._exact.get(key)
        match = int(self._registered_matches(np.asarray([key]))[0])
        return None if match < 0 else match

    def add(self, values: Sequence[float]) -> Tuple[int, bool]:
        """Register *values* if no match exists.

        Returns:
            (index, is_new) where *index* is the output index of the vertex
            and *is_new* tells whether it was registered by this call.
        """
        key = self._make_key(values)

        if self.epsilon is None:
            existing = self._exact.get(key)
            if existing is not None:
                return existing, False
            index = len(self._values)
            self._values.append(key)
            self._exact[key] = index
            return index, True

        count = len(self._values)
        index = int(self.add_all(np.asarray([key]))[0])
        return index, index == count

    def add_all(self, rows: np.ndarray) -> np.ndarray:
        """Register every row of a (count, components) array in order.

        Equivalent to calling ``add`` row by row.

        Returns:
            int64 array with the output index of each row.
        """
        rows = np.asarray(rows, dtype=np.float64)
        if rows.ndim != 2 or rows.shape[1] != self.components:
            raise ValueError(
                f"Expected rows of {self.components} components, got shape {rows.shape}"
            )

        if self.epsilon is None:
            return np.fromiter(
                (self.add(row)[0] for row in rows.tolist()), dtype=np.int64, count=len(rows),
            )

        indices = self._registered_matches(rows)
        if len(rows) == 0:
            return indices

        eps = self.epsilon
        neighbours = cKDTree(rows).query_ball_point(rows, r=eps, p=np.inf)
        claimed = np.full(len(rows), -1, dtype=np.int64)

        for i in range(len(rows)):
            if indices[i] >= 0:
                continue
            if claimed[i] >= 0:
                indices[i] = claimed[i]
                continue

            index = len(self._values)
            self._values.append(tuple(rows[i].tolist()))
            indices[i] = index
            # later rows within eps of this one, not already matched
            for j in neighbours[i]:
                if (j > i and indices[j] < 0 and claimed[j] < 0
                        and np.all(np.abs(rows[j] - rows[i]) < eps)):
                    claimed[j] = index

        self._tree = None
        return indices

    def as_array(self, dtype=np.float32) -> np.ndarray:
        """Registered vertices as a (count, components) array."""
        if not self._values:
            return np.zeros((0, self.components), dtype=dtype)
        return np.asarray(self._values, dtype=dtype)

    def _make_key(self, values: Sequence[float]) -> Tuple[float, ...]:
        if len(values) != self.components:
            raise ValueError(
                f"Expected {self.components} components, got {len(values)}"
            )
        return tuple(float(v) for v in values)

    def _registered_matches(self, rows: np.ndarray) -> np.ndarray:
        """Lowest registered index within epsilon of each row, or -1."""
        matches = np.full(len(rows), -1, dtype=np.int64)
        if not self._values or len(rows) == 0:
            return matches

        if self._tree is None:
            self._tree = cKDTree(np.asarray(self._values, dtype=np.float64))
        registered = self._tree.data
        eps = self.epsilon

        # ball query is inclusive; matching is strict
        candidates = self._tree.query_ball_point(rows, r=eps, p=np.inf)
        for row, found in enumerate(candidates):
            close = [c for c in found if np.all(np.abs(registered[c] - rows[row]) < eps)]
            if close:
                matches[row] = min(close)
        return matches
