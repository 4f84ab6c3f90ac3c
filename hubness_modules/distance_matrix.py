"""
This file contains the upper-triangular distance matrix used by every
component of the hubness engine.

Row i stores the distances from point i to all points j > i, so row i has
N - 1 - i entries and d(i, j) for i < j lives at rows[i][j - i - 1].
The matrix is immutable after construction and can be persisted to the
plain text format:
    line 1:      N
    line 2..N:   comma-separated row i (N - 1 - i values)
    last row:    empty
"""

import threading
import time
from pathlib import Path
import numpy as np
from typing import List, Optional, Sequence, Union

from hubness_modules.distances import Metric, euclidean_distance
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.parallel import run_blocks


class DistanceMatrix:
    """
    Stores a symmetric pairwise distance table as its upper triangle.

    Instances are read-only and safe to share between neighbor-set objects
    and threads. The square form is built on demand, once, and cached.
    """

    def __init__(self, rows: List[np.ndarray]):
        n = len(rows)
        for i, row in enumerate(rows):
            if len(row) != n - 1 - i:
                raise ConfigurationError(
                    f"Row {i} of a triangular matrix of size {n} must have "
                    f"{n - 1 - i} entries, got {len(row)}.")
        self.rows: List[np.ndarray] = [np.asarray(row, dtype=float) for row in rows]
        self._square: Optional[np.ndarray] = None
        self._square_lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    # -----------------------------------------------------------------
    #  Construction
    # -----------------------------------------------------------------

    @classmethod
    def compute(cls, X: np.ndarray, metric: Optional[Metric] = None,
                num_threads: int = 1) -> 'DistanceMatrix':
        """
        Computes the triangular matrix of X under `metric` (Euclidean by default).

        With num_threads > 1 the row range is split into contiguous blocks,
        one worker per block. A failing metric aborts the whole computation.
        """
        if X is None:
            raise DataAvailabilityError("No feature vectors to compute distances from.")
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        metric = metric if metric is not None else euclidean_distance
        n = len(X)

        print(f"  [DMat] Computing distances for {n} points (threads={num_threads})...")
        start_time = time.time()
        rows: List[Optional[np.ndarray]] = [None] * n

        def compute_block(start: int, end: int) -> None:
            for i in range(start, end):
                rows[i] = _compute_row(X, i, metric)

        run_blocks(compute_block, n, num_threads)
        print(f"    → Distance matrix complete in {time.time() - start_time:.2f}s.")
        return cls(rows)

    @classmethod
    def from_square(cls, square: np.ndarray) -> 'DistanceMatrix':
        """Takes the upper triangle of a square matrix (the lower one is ignored)."""
        square = np.asarray(square, dtype=float)
        if square.ndim != 2 or square.shape[0] != square.shape[1]:
            raise ConfigurationError(f"Expected a square matrix, got shape {square.shape}.")
        n = square.shape[0]
        return cls([square[i, i + 1:].copy() for i in range(n)])

    # -----------------------------------------------------------------
    #  Access
    # -----------------------------------------------------------------

    def get(self, i: int, j: int) -> float:
        """d(i, j) for any order of arguments; 0 on the diagonal."""
        if i == j:
            return 0.0
        if i > j:
            i, j = j, i
        return float(self.rows[i][j - i - 1])

    def row(self, i: int) -> np.ndarray:
        """The stored triangular row of point i."""
        return self.rows[i]

    def to_square(self) -> np.ndarray:
        """The full symmetric N x N matrix with a zero diagonal."""
        if self._square is None:
            with self._square_lock:
                if self._square is None:
                    n = self.size
                    square = np.zeros((n, n), dtype=float)
                    for i, row in enumerate(self.rows):
                        square[i, i + 1:] = row
                    square = square + square.T
                    square.setflags(write=False)
                    self._square = square
        return self._square

    def distances_from(self, i: int) -> np.ndarray:
        """Distances from point i to every point (0 for itself)."""
        return self.to_square()[i]

    def submatrix(self, indices: Sequence[int]) -> 'DistanceMatrix':
        """The triangular matrix of the given points, in the order given."""
        indices = np.asarray(indices, dtype=int)
        square = self.to_square()
        return DistanceMatrix.from_square(square[np.ix_(indices, indices)])

    def pair_distances(self) -> np.ndarray:
        """All N(N-1)/2 stored distances, row after row."""
        if self.size < 2:
            return np.zeros(0)
        return np.concatenate(self.rows[:-1])

    # -----------------------------------------------------------------
    #  Persistence
    # -----------------------------------------------------------------

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as handle:
            handle.write(f"{self.size}\n")
            for row in self.rows[:-1]:
                handle.write(",".join(repr(float(value)) for value in row))
                handle.write("\n")
        print(f"  [DMat] Saved {self.size}x{self.size} matrix to {path.name}")

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'DistanceMatrix':
        path = Path(path)
        if not path.exists():
            raise DataAvailabilityError(f"Distance matrix file not found: {path}")

        with open(path, 'r') as handle:
            header = handle.readline().strip()
            try:
                n = int(header)
            except ValueError:
                raise ConfigurationError(f"Bad size header in {path.name}: '{header}'")

            rows: List[np.ndarray] = []
            for i in range(n - 1):
                line = handle.readline().strip()
                if not line:
                    raise ConfigurationError(f"Row {i} missing in {path.name}.")
                rows.append(np.array(line.split(','), dtype=float))
            if n > 0:
                rows.append(np.zeros(0))

        print(f"  [DMat] Loaded {n}x{n} matrix from {path.name}")
        return cls(rows)


def _compute_row(X: np.ndarray, i: int, metric: Metric) -> np.ndarray:
    n = len(X)
    if i == n - 1:
        return np.zeros(0)
    values = np.asarray(metric(X[i], X[i + 1:]), dtype=float)
    if values.shape != (n - 1 - i,):
        # The metric does not broadcast; evaluate it pair by pair.
        values = np.array([metric(X[i], X[j]) for j in range(i + 1, n)], dtype=float)
    return values
