"""
This file contains the k-nearest-neighbor machinery of the hubness engine:
1. BoundedNeighborBuffer: a fixed-capacity sorted buffer of (distance, index)
   keys used for top-k selection (ties go to the lower index).
2. nearest_indexes: kNN of one point with a tabu (excluded) set.
3. NeighborSetFinder: kNN sets of every point, the cheap "shrink k"
   transition, prototype-restricted neighbor sets with seeded interval
   scanning, incremental add/remove of considered points, and all the
   occurrence ("hubness") statistics derived from the kNN sets.
"""

import bisect
import time
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple, Union

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.distances import Metric, euclidean_distance
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.hubness_stats import higher_moments, population_stdev
from hubness_modules.parallel import run_blocks

# --- Type Aliases ---
NeighborKey = Tuple[float, int]  # (distance, index)
Considered = Union[np.ndarray, Sequence[int]]

LAPLACE_CLASS_TO_CLASS = 0.01
EMPTY_SLOT = -1


class BoundedNeighborBuffer:
    """
    Keeps the `capacity` smallest (distance, index) keys in ascending order.

    Comparing full keys makes equal distances resolve to the lower index,
    so the buffer content never depends on insertion order.
    """

    def __init__(self, capacity: int, initial: Optional[List[NeighborKey]] = None):
        self.capacity: int = capacity
        self.keys: List[NeighborKey] = []
        if initial:
            for dist, idx in initial:
                self.insert(dist, idx)

    def __len__(self) -> int:
        return len(self.keys)

    def is_full(self) -> bool:
        return len(self.keys) >= self.capacity

    def worst_key(self) -> Optional[NeighborKey]:
        return self.keys[-1] if self.keys else None

    def accepts(self, dist: float, idx: int) -> bool:
        return not self.is_full() or (dist, idx) < self.keys[-1]

    def insert(self, dist: float, idx: int) -> bool:
        """Inserts the key if it belongs to the top `capacity`; returns whether it did."""
        if self.capacity <= 0 or not self.accepts(dist, idx):
            return False
        bisect.insort(self.keys, (dist, idx))
        if len(self.keys) > self.capacity:
            self.keys.pop()
        return True

    def indexes(self) -> List[int]:
        return [idx for _, idx in self.keys]

    def distances(self) -> List[float]:
        return [dist for dist, _ in self.keys]


def nearest_indexes(dist_matrix: DistanceMatrix, i: int, k: int,
                    tabu: Optional[np.ndarray] = None) -> np.ndarray:
    """
    The (up to) k nearest neighbors of point i, ascending by distance.

    `tabu` is a boolean mask of points that may not be returned. The point
    itself is always excluded. Ties are broken by the lower index.
    """
    row = np.array(dist_matrix.distances_from(i), dtype=float)
    row[i] = np.inf
    allowed = np.ones(len(row), dtype=bool)
    allowed[i] = False
    if tabu is not None:
        allowed &= ~tabu
    candidates = np.flatnonzero(allowed)
    order = np.argsort(row[candidates], kind='stable')[:k]
    return candidates[order]


class NeighborSetFinder:
    """
    Builds and maintains the k-nearest-neighbor sets of a dataset.

    States: no neighbor sets yet, neighbor sets ready for some k. Reducing k
    truncates the stored arrays (the k1-NN list is always a prefix of the
    k2-NN list for k1 < k2); asking for a larger k than was computed
    recomputes the sets.

    Neighbor sets may be restricted to a set of "considered" points
    (prototypes); points outside of it are never returned as neighbors,
    but their own neighbor lists are still maintained.
    """

    def __init__(self,
                 data: Union[DataSet, np.ndarray, None] = None,
                 dist_matrix: Optional[DistanceMatrix] = None,
                 metric: Optional[Metric] = None,
                 num_threads: int = 1):
        """
        Initializes the finder.

        Args:
            data (DataSet | np.ndarray): The data (features and labels). Raw
                                         arrays are wrapped as unlabeled data.
            dist_matrix (DistanceMatrix): Precomputed distances. When omitted,
                                          they are computed on first use.
            metric (Callable): Distance function, Euclidean by default.
            num_threads (int): Workers for the lazy distance computation and
                               for the neighbor-set computation.
        """
        if data is not None and not isinstance(data, DataSet):
            data = DataSet(np.asarray(data, dtype=float))
        if data is None and dist_matrix is None:
            raise DataAvailabilityError("Neither data nor a distance matrix was provided.")
        if data is not None and dist_matrix is not None and data.size() != dist_matrix.size:
            raise ConfigurationError(
                f"Data size ({data.size()}) and distance matrix size "
                f"({dist_matrix.size}) differ.")

        self.data: Optional[DataSet] = data
        self.metric: Metric = metric if metric is not None else euclidean_distance
        self.num_threads: int = num_threads
        self._dist_matrix: Optional[DistanceMatrix] = dist_matrix

        self.size: int = data.size() if data is not None else dist_matrix.size
        self.labels: np.ndarray = (data.get_labels() if data is not None
                                   else np.full(self.size, -1, dtype=int))
        self.num_classes: int = data.count_categories() if data is not None else 0

        # Neighbor arrays hold the largest k computed so far; current_k <= their width.
        self._neighbors: Optional[np.ndarray] = None
        self._distances: Optional[np.ndarray] = None
        self.current_k: int = 0
        self.considered: Optional[np.ndarray] = None

        self._occurrences: Optional[np.ndarray] = None
        self._good: Optional[np.ndarray] = None
        self._bad: Optional[np.ndarray] = None
        self._class_relation: Optional[np.ndarray] = None
        self._reverse: Optional[List[List[int]]] = None

    # -----------------------------------------------------------------
    #  Distances
    # -----------------------------------------------------------------

    @property
    def dist_matrix(self) -> DistanceMatrix:
        if self._dist_matrix is None:
            if self.data is None or not self.data.has_features():
                raise DataAvailabilityError("No distance matrix and no features to compute one.")
            self._dist_matrix = DistanceMatrix.compute(self.data.X, self.metric, self.num_threads)
        return self._dist_matrix

    def has_neighbor_sets(self) -> bool:
        return self._neighbors is not None and self.current_k > 0

    @property
    def computed_k(self) -> int:
        return 0 if self._neighbors is None else self._neighbors.shape[1]

    @property
    def k_neighbors(self) -> np.ndarray:
        """N x k array of neighbor indices (-1 marks an empty slot)."""
        self._require_neighbors()
        return self._neighbors[:, :self.current_k]

    @property
    def k_distances(self) -> np.ndarray:
        """N x k array of neighbor distances (inf marks an empty slot)."""
        self._require_neighbors()
        return self._distances[:, :self.current_k]

    def _require_neighbors(self) -> None:
        if self._neighbors is None:
            raise DataAvailabilityError("Neighbor sets have not been calculated yet.")

    def _validate_k(self, k: int, limit: int) -> None:
        if k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        if k > limit:
            raise ConfigurationError(f"Neighborhood size k={k} exceeds the maximum of {limit}.")

    # -----------------------------------------------------------------
    #  Full neighbor sets
    # -----------------------------------------------------------------

    def calculate_neighbor_sets(self, k: int, num_threads: Optional[int] = None) -> None:
        """
        Computes the k nearest neighbors of every point over all other points.

        Points are partitioned into contiguous blocks; every worker writes
        only the rows of its own block.
        """
        self._validate_k(k, self.size - 1)
        num_threads = self.num_threads if num_threads is None else num_threads
        square = self.dist_matrix.to_square()

        print(f"  [NSF] Calculating {k}-NN sets for {self.size} points (threads={num_threads})...")
        start_time = time.time()
        neighbors = np.full((self.size, k), EMPTY_SLOT, dtype=int)
        distances = np.full((self.size, k), np.inf, dtype=float)

        def knn_block(start: int, end: int) -> None:
            for i in range(start, end):
                row = np.array(square[i], dtype=float)
                row[i] = np.inf
                # A stable sort keeps the lower index first among equal distances.
                order = np.argsort(row, kind='stable')[:k]
                neighbors[i] = order
                distances[i] = row[order]

        run_blocks(knn_block, self.size, num_threads)

        self._neighbors = neighbors
        self._distances = distances
        self.current_k = k
        self.considered = None
        self._calculate_occurrences()
        print(f"    → kNN sets complete in {time.time() - start_time:.2f}s.")

    def recalculate_stats_for_smaller_k(self, k: int) -> None:
        """
        Switches to neighborhood size k. Any k up to the computed one is a
        truncation; a larger k triggers a full recomputation.
        """
        if k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        if self._neighbors is None or k > self.computed_k:
            if self.considered is not None:
                self.calculate_restricted_neighbor_sets(k, self.considered)
            else:
                self.calculate_neighbor_sets(k)
            return
        self.current_k = k
        self._calculate_occurrences()

    # -----------------------------------------------------------------
    #  Restricted (prototype-only) neighbor sets
    # -----------------------------------------------------------------

    def calculate_restricted_neighbor_sets(self, k: int, considered: Considered,
                                           seed_finder: Optional['NeighborSetFinder'] = None,
                                           num_threads: Optional[int] = None) -> None:
        """
        Computes, for every point, the k nearest neighbors among the considered points.

        When `seed_finder` (a finder over the same points) already holds kNN
        sets, its neighbors that are considered are used as sorted seeds; the
        index ranges between consecutive seeds (bounded by the -1 and N
        sentinels) are then scanned for the remaining considered points. The
        result is identical to scanning the considered points from scratch.

        k may exceed the number of considered points; the slots that cannot
        be filled stay empty (-1).
        """
        mask = self._as_mask(considered)
        if not mask.any():
            raise DataAvailabilityError("No points are marked as considered neighbors.")
        self._validate_k(k, self.size - 1)
        num_threads = self.num_threads if num_threads is None else num_threads
        square = self.dist_matrix.to_square()
        considered_idx = np.flatnonzero(mask)

        seeds_source = None
        if seed_finder is not None and seed_finder.has_neighbor_sets():
            if seed_finder.size != self.size:
                raise ConfigurationError("The seed finder must cover the same points.")
            seeds_source = seed_finder.k_neighbors

        neighbors = np.full((self.size, k), EMPTY_SLOT, dtype=int)
        distances = np.full((self.size, k), np.inf, dtype=float)

        def restricted_block(start: int, end: int) -> None:
            for i in range(start, end):
                seeds: List[int] = []
                if seeds_source is not None:
                    seeds = [int(j) for j in seeds_source[i] if j >= 0 and mask[j] and j != i]
                buffer = _scan_restricted(square[i], i, k, seeds, considered_idx)
                width = len(buffer)
                neighbors[i, :width] = buffer.indexes()
                distances[i, :width] = buffer.distances()

        run_blocks(restricted_block, self.size, num_threads)

        self._neighbors = neighbors
        self._distances = distances
        self.current_k = k
        self.considered = mask
        self._calculate_occurrences()

    def consider_neighbor(self, index: int, remove: bool = False) -> None:
        """
        Adds a point to (or removes it from) the set of points that may be neighbors.

        Only the neighbor lists that change are touched: an added point is
        inserted into every list it improves, a removed point is dropped from
        the lists of its reverse neighbors, which are then refilled from the
        remaining considered points.
        """
        self._require_neighbors()
        if self.considered is None:
            self.considered = np.ones(self.size, dtype=bool)
        if self.computed_k > self.current_k:
            self._neighbors = self._neighbors[:, :self.current_k].copy()
            self._distances = self._distances[:, :self.current_k].copy()
        if self.considered[index] != remove:
            return

        k = self.current_k
        square = self.dist_matrix.to_square()

        if not remove:
            self.considered[index] = True
            d = square[:, index]
            last_d = self._distances[:, -1]
            last_i = self._neighbors[:, -1]
            improves = (d < last_d) | ((d == last_d) & (last_i >= 0) & (index < last_i))
            improves[index] = False
            for i in np.flatnonzero(improves):
                keys = list(zip(self._distances[i].tolist(), self._neighbors[i].tolist()))
                keys = [key for key in keys if key[1] >= 0]
                bisect.insort(keys, (float(d[i]), index))
                keys = keys[:k]
                self._write_row(i, keys)
        else:
            self.considered[index] = False
            considered_idx = np.flatnonzero(self.considered)
            holders = np.flatnonzero((self._neighbors == index).any(axis=1))
            for i in holders:
                remaining = [int(j) for j in self._neighbors[i] if j >= 0 and j != index]
                buffer = _scan_restricted(square[i], int(i), k, remaining, considered_idx)
                self._write_row(i, buffer.keys)

        self._calculate_occurrences()

    def _write_row(self, i: int, keys: List[NeighborKey]) -> None:
        self._neighbors[i] = EMPTY_SLOT
        self._distances[i] = np.inf
        for slot, (dist, idx) in enumerate(keys):
            self._neighbors[i, slot] = idx
            self._distances[i, slot] = dist

    def _as_mask(self, considered: Considered) -> np.ndarray:
        considered = np.asarray(considered)
        if considered.dtype == bool:
            if len(considered) != self.size:
                raise ConfigurationError("Considered mask length differs from the data size.")
            return considered.copy()
        mask = np.zeros(self.size, dtype=bool)
        mask[considered.astype(int)] = True
        return mask

    # -----------------------------------------------------------------
    #  Copies and subsets
    # -----------------------------------------------------------------

    def copy(self) -> 'NeighborSetFinder':
        """An independent finder sharing the (read-only) distance matrix."""
        clone = NeighborSetFinder(self.data, self._dist_matrix, self.metric, self.num_threads)
        if self._neighbors is not None:
            clone._neighbors = self._neighbors.copy()
            clone._distances = self._distances.copy()
            clone.current_k = self.current_k
            clone.considered = None if self.considered is None else self.considered.copy()
            clone._calculate_occurrences()
        return clone

    def get_sub_nsf(self, k: int) -> 'NeighborSetFinder':
        """A copy holding only the k-NN sets; recomputed if k exceeds the computed size."""
        if k <= self.computed_k:
            clone = self.copy()
            clone._neighbors = clone._neighbors[:, :k].copy()
            clone._distances = clone._distances[:, :k].copy()
            clone.current_k = k
            clone._calculate_occurrences()
            return clone
        clone = NeighborSetFinder(self.data, self.dist_matrix, self.metric, self.num_threads)
        if self.considered is not None:
            clone.calculate_restricted_neighbor_sets(k, self.considered, seed_finder=self)
        else:
            clone.calculate_neighbor_sets(k)
        return clone

    def restrict_to(self, indices: Sequence[int]) -> 'NeighborSetFinder':
        """A fresh finder over the given points only, with its own sub-matrix."""
        sub_data = self.data.subsample(indices) if self.data is not None else None
        sub_matrix = self.dist_matrix.submatrix(indices)
        return NeighborSetFinder(sub_data, sub_matrix, self.metric, self.num_threads)

    # -----------------------------------------------------------------
    #  Occurrence derivation
    # -----------------------------------------------------------------

    def _calculate_occurrences(self) -> None:
        neighbors = self.k_neighbors
        valid = neighbors >= 0
        queries = np.broadcast_to(np.arange(self.size)[:, None], neighbors.shape)
        flat_neighbors = neighbors[valid]
        flat_queries = queries[valid]

        self._occurrences = np.bincount(flat_neighbors, minlength=self.size)

        query_labels = self.labels[flat_queries]
        neighbor_labels = self.labels[flat_neighbors]
        labeled = query_labels >= 0
        same = labeled & (query_labels == neighbor_labels)
        different = labeled & (query_labels != neighbor_labels)
        self._good = np.bincount(flat_neighbors[same], minlength=self.size)
        self._bad = np.bincount(flat_neighbors[different], minlength=self.size)

        relation = np.zeros((max(self.num_classes, 0), self.size), dtype=int)
        if self.num_classes > 0:
            np.add.at(relation, (query_labels[labeled], flat_neighbors[labeled]), 1)
        self._class_relation = relation
        self._reverse = None

    def get_neighbor_frequencies(self) -> np.ndarray:
        self._require_neighbors()
        return self._occurrences

    def get_good_frequencies(self) -> np.ndarray:
        self._require_neighbors()
        return self._good

    def get_bad_frequencies(self) -> np.ndarray:
        self._require_neighbors()
        return self._bad

    def get_class_data_neighbor_relation(self) -> np.ndarray:
        """C x N matrix: how often each point occurs in the kNN sets of each class."""
        self._require_neighbors()
        return self._class_relation

    def get_reverse_neighbors(self) -> List[List[int]]:
        """For every point, the points that have it as a neighbor (in query order)."""
        self._require_neighbors()
        if self._reverse is None:
            reverse: List[List[int]] = [[] for _ in range(self.size)]
            for i, row in enumerate(self.k_neighbors):
                for j in row:
                    if j >= 0:
                        reverse[j].append(i)
            self._reverse = reverse
        return self._reverse

    # -----------------------------------------------------------------
    #  Occurrence summaries
    # -----------------------------------------------------------------

    def get_occurrence_summary(self) -> Dict[str, float]:
        """Means and population standard deviations of the occurrence arrays."""
        occ = self.get_neighbor_frequencies().astype(float)
        good = self.get_good_frequencies().astype(float)
        bad = self.get_bad_frequencies().astype(float)
        diff = good - bad
        relative = np.ones(self.size, dtype=float)
        nonzero = occ > 0
        relative[nonzero] = diff[nonzero] / occ[nonzero]

        summary: Dict[str, float] = {}
        for name, values in [('occ', occ), ('good', good), ('bad', bad),
                             ('good_minus_bad', diff), ('relative_good_minus_bad', relative)]:
            summary[f'{name}_mean'] = float(values.mean()) if len(values) else 0.0
            summary[f'{name}_stdev'] = population_stdev(values)
        return summary

    def get_hubness_skewness(self) -> float:
        return higher_moments(self.get_neighbor_frequencies())['skewness']

    def get_perc_frequent_at_least(self, threshold: int) -> float:
        """Fraction of points occurring at least `threshold` times."""
        occ = self.get_neighbor_frequencies()
        return float(np.count_nonzero(occ >= threshold)) / self.size

    def get_perc_frequent_less_or_equal_than(self, threshold: int) -> float:
        """Fraction of points occurring at most `threshold` times."""
        occ = self.get_neighbor_frequencies()
        return float(np.count_nonzero(occ <= threshold)) / self.size

    def get_label_mismatch_percentages(self) -> np.ndarray:
        """
        For every k' = 1..k, the fraction of the first k' neighbor slots
        holding a neighbor with a different label than the query.
        """
        neighbors = self.k_neighbors
        valid = neighbors >= 0
        neighbor_labels = np.where(valid, self.labels[np.where(valid, neighbors, 0)], -2)
        query_labels = self.labels[:, None]
        mismatches = valid & (query_labels >= 0) & (neighbor_labels != query_labels)
        cumulative = np.cumsum(mismatches.sum(axis=0))
        slots = self.size * np.arange(1, self.current_k + 1)
        return cumulative / slots

    def get_hub_indexes(self) -> np.ndarray:
        """Points occurring at least k + 2 sigma times, sigma measured around k."""
        occ = self.get_neighbor_frequencies().astype(float)
        sigma = np.sqrt(np.mean((occ - self.current_k) ** 2))
        return np.flatnonzero(occ >= self.current_k + 2 * sigma)

    # -----------------------------------------------------------------
    #  Neighbor label entropies
    # -----------------------------------------------------------------

    def get_direct_entropies(self) -> np.ndarray:
        """Shannon entropy (log2) of the labels in each point's kNN set."""
        self._require_neighbors()
        entropies = np.zeros(self.size, dtype=float)
        if self.num_classes == 0:
            return entropies
        k = self.current_k
        for i, row in enumerate(self.k_neighbors):
            row_labels = self.labels[row[row >= 0]]
            counts = np.bincount(row_labels[row_labels >= 0], minlength=self.num_classes)
            entropies[i] = _entropy(counts / k)
        return entropies

    def get_reverse_entropies(self) -> np.ndarray:
        """
        Shannon entropy (log2) of the labels of each point's reverse neighbors.
        Points with at most one reverse neighbor have entropy 0.
        """
        entropies = np.zeros(self.size, dtype=float)
        if self.num_classes == 0:
            return entropies
        for j, reverse in enumerate(self.get_reverse_neighbors()):
            if len(reverse) <= 1:
                continue
            reverse_labels = self.labels[reverse]
            counts = np.bincount(reverse_labels[reverse_labels >= 0], minlength=self.num_classes)
            entropies[j] = _entropy(counts / len(reverse))
        return entropies

    def get_entropy_summary(self) -> Dict[str, float]:
        direct = self.get_direct_entropies()
        reverse = self.get_reverse_entropies()
        return {
            'direct_entropy_mean': float(direct.mean()),
            'direct_entropy_stdev': population_stdev(direct),
            'reverse_entropy_mean': float(reverse.mean()),
            'reverse_entropy_stdev': population_stdev(reverse),
        }

    # -----------------------------------------------------------------
    #  Class-to-class hubness
    # -----------------------------------------------------------------

    def get_class_to_class_neighbor_matrix(self, fuzzy: bool = True,
                                           extend_by_element: bool = False,
                                           laplace: float = LAPLACE_CLASS_TO_CLASS) -> np.ndarray:
        """
        C x C matrix; row c1, column c2 relates to the neighbor slots of
        c1-labeled points that hold c2-labeled points.

        With `extend_by_element` every point also counts as its own neighbor.
        The fuzzy form normalizes each row with Laplace smoothing:
            (count + laplace) / (row_sum + C * laplace)
        """
        self._require_neighbors()
        num_classes = self.num_classes
        counts = np.zeros((num_classes, num_classes), dtype=float)
        if num_classes == 0:
            return counts

        neighbors = self.k_neighbors
        valid = neighbors >= 0
        query_labels = np.broadcast_to(self.labels[:, None], neighbors.shape)[valid]
        neighbor_labels = self.labels[neighbors[valid]]
        keep = (query_labels >= 0) & (neighbor_labels >= 0)
        np.add.at(counts, (query_labels[keep], neighbor_labels[keep]), 1)

        if extend_by_element:
            own = self.labels[self.labels >= 0]
            np.add.at(counts, (own, own), 1)

        if not fuzzy:
            return counts
        row_sums = counts.sum(axis=1, keepdims=True)
        return (counts + laplace) / (row_sums + num_classes * laplace)


def _entropy(probabilities: np.ndarray) -> float:
    positive = probabilities[probabilities > 0]
    return float(-(positive * np.log2(positive)).sum())


def _scan_restricted(row: np.ndarray, i: int, k: int, seeds: List[int],
                     considered_idx: np.ndarray) -> BoundedNeighborBuffer:
    """
    Top-k considered neighbors of point i.

    The seeds go into the buffer first; then only the index gaps between
    consecutive sorted seeds are scanned, and only candidates that beat the
    current k-th key are inserted.
    """
    buffer = BoundedNeighborBuffer(k, [(float(row[j]), j) for j in seeds])
    bounds = [-1] + sorted(seeds) + [len(row)]

    for lower, upper in zip(bounds[:-1], bounds[1:]):
        if upper - lower <= 1:
            continue
        lo = np.searchsorted(considered_idx, lower, side='right')
        hi = np.searchsorted(considered_idx, upper, side='left')
        gap = considered_idx[lo:hi]
        gap = gap[gap != i]
        if len(gap) == 0:
            continue
        gap_dists = row[gap]
        worst = buffer.worst_key() if buffer.is_full() else None
        if worst is not None:
            keep = (gap_dists < worst[0]) | ((gap_dists == worst[0]) & (gap < worst[1]))
            gap = gap[keep]
            gap_dists = gap_dists[keep]
        for j, dist in zip(gap.tolist(), gap_dists.tolist()):
            buffer.insert(dist, j)

    return buffer
