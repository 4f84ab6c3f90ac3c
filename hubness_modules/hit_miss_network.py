"""
This file contains the Hit-Miss Network: for every point, its k_hm nearest
same-class points ("hits") and its k_hm nearest different-class points
("misses"), together with the hit/miss occurrence frequencies, the reverse
hit/miss sets and the hit-miss score derived from them.

The network is rebuilt from scratch whenever the active point set of an
iterative selector changes.
"""

import numpy as np
from typing import List, Optional

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.neighbor_sets import NeighborSetFinder, nearest_indexes

DEFAULT_NEIGHBORHOOD_SIZE = 1


def compute_hm_score(hit_freq: float, miss_freq: float) -> float:
    """
    pHit * log2(pHit) - pMiss * log2(pMiss), with both probabilities
    normalized to sum to one. Points that never occur score -1, below any
    attainable value.
    """
    if hit_freq < 0 or miss_freq < 0 or hit_freq + miss_freq == 0:
        return -1.0
    p_hit = hit_freq / (hit_freq + miss_freq)
    p_miss = miss_freq / (hit_freq + miss_freq)
    score = 0.0
    if p_hit > 0:
        score += p_hit * np.log2(p_hit)
    if p_miss > 0:
        score -= p_miss * np.log2(p_miss)
    return float(score)


class HitMissNetwork:
    """Per-point hit and miss neighbor lists and their occurrence statistics."""

    def __init__(self, data: DataSet, dist_matrix: DistanceMatrix,
                 k_hm: int = DEFAULT_NEIGHBORHOOD_SIZE):
        self.data: DataSet = data
        self.dist_matrix: DistanceMatrix = dist_matrix
        self.k_hm: int = k_hm

        self.hits: List[np.ndarray] = []
        self.misses: List[np.ndarray] = []
        self.hit_occ_freqs: Optional[np.ndarray] = None
        self.miss_occ_freqs: Optional[np.ndarray] = None
        self.hit_reverse_sets: List[List[int]] = []
        self.miss_reverse_sets: List[List[int]] = []

    def _validate(self) -> np.ndarray:
        if self.data is None or self.data.is_empty():
            raise DataAvailabilityError("No data provided to the hit-miss network.")
        size = self.data.size()
        if self.k_hm <= 0 or self.k_hm > size - 1:
            raise ConfigurationError(f"Bad hit-miss neighborhood size: {self.k_hm}")
        if self.dist_matrix is None:
            raise DataAvailabilityError("No distance matrix provided to the hit-miss network.")
        if not self.data.has_labels() or self.data.get_noise_mask().any():
            raise DataAvailabilityError("Hit-miss networks need a label for every point.")
        if self.data.count_present_classes() < 2:
            raise DataAvailabilityError(
                "Only one class in the data; use plain kNN extraction instead.")
        present = self.data.get_class_frequencies()
        min_class_size = int(present[present > 0].min())
        if self.k_hm > min_class_size:
            raise ConfigurationError(
                f"Hit-miss neighborhood size {self.k_hm} exceeds the minimum "
                f"class size {min_class_size}.")
        return self.data.get_labels()

    def generate_network(self) -> None:
        labels = self._validate()
        size = self.data.size()
        self.hits = []
        self.misses = []
        for i in range(size):
            other_class = labels != labels[i]
            self.hits.append(nearest_indexes(self.dist_matrix, i, self.k_hm, tabu=other_class))
            self.misses.append(nearest_indexes(self.dist_matrix, i, self.k_hm, tabu=~other_class))
        self._calculate_occurrences()

    def generate_from_finder(self, nsf: Optional[NeighborSetFinder]) -> None:
        """
        Builds the network reusing an existing kNN structure over the same points.

        The same-class entries of a distance-ordered kNN list are the nearest
        hits (and likewise for misses); only points whose list holds too few
        of either get an extra restricted search.
        """
        if nsf is None or not nsf.has_neighbor_sets() or nsf.considered is not None:
            self.generate_network()
            return
        labels = self._validate()
        if nsf.size != self.data.size():
            raise ConfigurationError("The neighbor set finder covers different points.")

        self.hits = []
        self.misses = []
        for i, row in enumerate(nsf.k_neighbors):
            row = row[row >= 0]
            same = labels[row] == labels[i]
            hits = row[same][:self.k_hm]
            misses = row[~same][:self.k_hm]
            other_class = labels != labels[i]
            if len(hits) < self.k_hm:
                hits = nearest_indexes(self.dist_matrix, i, self.k_hm, tabu=other_class)
            if len(misses) < self.k_hm:
                misses = nearest_indexes(self.dist_matrix, i, self.k_hm, tabu=~other_class)
            self.hits.append(hits)
            self.misses.append(misses)
        self._calculate_occurrences()

    def _calculate_occurrences(self) -> None:
        size = self.data.size()
        self.hit_occ_freqs = np.zeros(size, dtype=float)
        self.miss_occ_freqs = np.zeros(size, dtype=float)
        self.hit_reverse_sets = [[] for _ in range(size)]
        self.miss_reverse_sets = [[] for _ in range(size)]
        for i in range(size):
            for j in self.hits[i]:
                self.hit_occ_freqs[j] += 1
                self.hit_reverse_sets[j].append(i)
            for j in self.misses[i]:
                self.miss_occ_freqs[j] += 1
                self.miss_reverse_sets[j].append(i)

    def compute_all_hm_scores(self) -> np.ndarray:
        if self.hit_occ_freqs is None:
            raise DataAvailabilityError("The hit-miss network has not been generated.")
        return np.array([compute_hm_score(h, m)
                         for h, m in zip(self.hit_occ_freqs, self.miss_occ_freqs)])
