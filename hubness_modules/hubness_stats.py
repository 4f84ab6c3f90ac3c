"""
This file contains the hubness statistics computed from neighbor
occurrence frequencies:
1. Population moments (mean, stdev, skewness, excess kurtosis).
2. Explorers that sweep k = 1..k_max over a NeighborSetFinder, using its
   cheap "shrink k" transition, and return one value (or row) per k:
   - threshold percentages, skewness/kurtosis, stdev, label mismatch,
   - direct/reverse neighbor label entropies,
   - top-hub cluster diameter and average distance,
   - highest occurrences, hub/orphan/regular fractions,
   - bucketed occurrence distributions and class-to-class matrices.

Every explorer restores the finder's original k when it is done.
"""

import numpy as np
from scipy import stats
from typing import Any, Dict, Iterator, List

from hubness_modules.clusters import Cluster
from hubness_modules.errors import ConfigurationError, DataAvailabilityError

# --- Type Aliases ---
Finder = Any  # NeighborSetFinder; typed loosely to keep the import graph acyclic

DEFAULT_THRESHOLDS = (1, 2, 3, 4, 5)
DEFAULT_TOP_HUBS = (10, 5)
DEFAULT_NUM_EXTREMES = 15


# -----------------------------------------------------------------
#  Moments
# -----------------------------------------------------------------

def population_stdev(values) -> float:
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return 0.0
    return float(np.sqrt(np.mean((values - values.mean()) ** 2)))


def higher_moments(values) -> Dict[str, float]:
    """
    Mean, population standard deviation, skewness and excess kurtosis.

    The biased (population) estimators of scipy.stats are used:
    skewness = m3 / m2^1.5, kurtosis = m4 / m2^2 - 3.
    Both are 0 for empty input or zero variance.
    """
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return {'mean': 0.0, 'stdev': 0.0, 'skewness': 0.0, 'kurtosis': 0.0}

    mean = float(values.mean())
    if np.ptp(values) == 0:
        return {'mean': mean, 'stdev': 0.0, 'skewness': 0.0, 'kurtosis': 0.0}

    return {
        'mean': mean,
        'stdev': float(values.std()),
        'skewness': float(stats.skew(values)),
        'kurtosis': float(stats.kurtosis(values)),
    }


# -----------------------------------------------------------------
#  k sweep helper
# -----------------------------------------------------------------

def _sweep_k(nsf: Finder, k_max: int) -> Iterator[int]:
    """Yields k = 1..k_max with the finder switched to each k, then restores it."""
    if not nsf.has_neighbor_sets():
        raise DataAvailabilityError("The neighbor sets must be calculated before exploring them.")
    if k_max <= 0 or k_max > nsf.computed_k:
        raise ConfigurationError(
            f"k_max={k_max} must be between 1 and the computed k={nsf.computed_k}.")
    original_k = nsf.current_k
    try:
        for k in range(1, k_max + 1):
            nsf.recalculate_stats_for_smaller_k(k)
            yield k
    finally:
        nsf.recalculate_stats_for_smaller_k(original_k)


def _resolve_k_max(nsf: Finder, k_max) -> int:
    return nsf.computed_k if k_max is None else k_max


# -----------------------------------------------------------------
#  Per-k explorers
# -----------------------------------------------------------------

def threshold_percentages(nsf: Finder, k_max: int = None, thresholds=DEFAULT_THRESHOLDS,
                          at_least: bool = True) -> np.ndarray:
    """
    (len(thresholds), k_max) array; entry [t, k-1] is the fraction of points
    occurring at least (or at most) thresholds[t] times at that k.
    """
    k_max = _resolve_k_max(nsf, k_max)
    result = np.zeros((len(thresholds), k_max))
    for k in _sweep_k(nsf, k_max):
        for t_index, threshold in enumerate(thresholds):
            if at_least:
                result[t_index, k - 1] = nsf.get_perc_frequent_at_least(threshold)
            else:
                result[t_index, k - 1] = nsf.get_perc_frequent_less_or_equal_than(threshold)
    return result


def skewness_kurtosis(nsf: Finder, k_max: int = None) -> Dict[str, np.ndarray]:
    """Occurrence skewness and excess kurtosis for every k."""
    k_max = _resolve_k_max(nsf, k_max)
    skew = np.zeros(k_max)
    kurt = np.zeros(k_max)
    for k in _sweep_k(nsf, k_max):
        moments = higher_moments(nsf.get_neighbor_frequencies())
        skew[k - 1] = moments['skewness']
        kurt[k - 1] = moments['kurtosis']
    return {'skewness': skew, 'kurtosis': kurt}


def stdev_range(nsf: Finder, k_max: int = None) -> np.ndarray:
    """Population stdev of the occurrence frequencies for every k."""
    k_max = _resolve_k_max(nsf, k_max)
    result = np.zeros(k_max)
    for k in _sweep_k(nsf, k_max):
        result[k - 1] = population_stdev(nsf.get_neighbor_frequencies())
    return result


def label_mismatch(nsf: Finder, k_max: int = None) -> np.ndarray:
    """Bad hubness: the fraction of neighbor slots with a label mismatch, per k."""
    k_max = _resolve_k_max(nsf, k_max)
    original_k = nsf.current_k
    nsf.recalculate_stats_for_smaller_k(k_max)
    try:
        return np.array(nsf.get_label_mismatch_percentages())
    finally:
        nsf.recalculate_stats_for_smaller_k(original_k)


def neighbor_entropies(nsf: Finder, k_max: int = None) -> Dict[str, np.ndarray]:
    """
    Direct and reverse kNN label entropy statistics for every k:
    mean, stdev, skewness and kurtosis over points, plus the mean and stdev
    of the signed difference direct - reverse.
    """
    k_max = _resolve_k_max(nsf, k_max)
    keys = ['direct_mean', 'direct_stdev', 'direct_skewness', 'direct_kurtosis',
            'reverse_mean', 'reverse_stdev', 'reverse_skewness', 'reverse_kurtosis',
            'diff_mean', 'diff_stdev']
    result = {key: np.zeros(k_max) for key in keys}

    for k in _sweep_k(nsf, k_max):
        direct = nsf.get_direct_entropies()
        reverse = nsf.get_reverse_entropies()
        for prefix, values in [('direct', direct), ('reverse', reverse)]:
            moments = higher_moments(values)
            result[f'{prefix}_mean'][k - 1] = moments['mean']
            result[f'{prefix}_stdev'][k - 1] = moments['stdev']
            result[f'{prefix}_skewness'][k - 1] = moments['skewness']
            result[f'{prefix}_kurtosis'][k - 1] = moments['kurtosis']
        diff = direct - reverse
        result['diff_mean'][k - 1] = float(diff.mean())
        result['diff_stdev'][k - 1] = population_stdev(diff)
    return result


def top_hubs_cluster(nsf: Finder, num_top_hubs: int, k_max: int = None) -> Dict[str, np.ndarray]:
    """
    Treats the `num_top_hubs` most frequent neighbors as a cluster, for every k,
    and reports its diameter (largest centroid-to-member distance) and the
    average centroid-to-member distance.
    """
    if nsf.data is None or not nsf.data.has_features():
        raise DataAvailabilityError("Top hub clusters need feature vectors.")
    k_max = _resolve_k_max(nsf, k_max)
    diameters = np.zeros(k_max)
    avg_dists = np.zeros(k_max)
    for k in _sweep_k(nsf, k_max):
        occ = nsf.get_neighbor_frequencies()
        top = _indexes_by_decreasing_value(occ)[:min(num_top_hubs, nsf.size)]
        cluster = Cluster(nsf.data, top)
        diameters[k - 1] = cluster.calculate_diameter(nsf.metric)
        avg_dists[k - 1] = cluster.average_intra_distance(nsf.metric)
    return {'diameter': diameters, 'avg_distance': avg_dists}


def highest_occurrences(nsf: Finder, num_elements: int = DEFAULT_NUM_EXTREMES,
                        k_max: int = None) -> Dict[str, np.ndarray]:
    """
    The `num_elements` highest occurrence counts for every k, highest first,
    with the indexes of the points holding them.
    """
    k_max = _resolve_k_max(nsf, k_max)
    num_elements = min(num_elements, nsf.size)
    scores = np.zeros((k_max, num_elements))
    indexes = np.zeros((k_max, num_elements), dtype=int)
    for k in _sweep_k(nsf, k_max):
        occ = nsf.get_neighbor_frequencies()
        top = _indexes_by_decreasing_value(occ)[:num_elements]
        scores[k - 1] = occ[top]
        indexes[k - 1] = top
    return {'scores': scores, 'indexes': indexes}


def hub_orphan_regular(nsf: Finder, k_max: int = None) -> Dict[str, np.ndarray]:
    """
    Fractions of hubs, orphans and regular points for every k.

    sigma is the spread of the occurrences around their expected value k:
        hub:     occ >= k + 2 sigma
        orphan:  occ <= max(0, k - 2 sigma)
        regular: everything else
    """
    k_max = _resolve_k_max(nsf, k_max)
    hubs = np.zeros(k_max)
    orphans = np.zeros(k_max)
    regulars = np.zeros(k_max)
    for k in _sweep_k(nsf, k_max):
        occ = nsf.get_neighbor_frequencies().astype(float)
        sigma = np.sqrt(np.mean((occ - k) ** 2))
        is_hub = occ >= k + 2 * sigma
        is_orphan = ~is_hub & (occ <= max(0.0, k - 2 * sigma))
        hubs[k - 1] = np.mean(is_hub)
        orphans[k - 1] = np.mean(is_orphan)
        regulars[k - 1] = 1.0 - hubs[k - 1] - orphans[k - 1]
    return {'hubs': hubs, 'orphans': orphans, 'regulars': regulars}


def bucketed_occurrences(nsf: Finder, bucket_width: int, k_max: int = None) -> List[np.ndarray]:
    """Occurrence histograms with the given bucket width, one per k."""
    if bucket_width <= 0:
        raise ConfigurationError(f"Bucket width must be positive, got {bucket_width}.")
    k_max = _resolve_k_max(nsf, k_max)
    histograms: List[np.ndarray] = []
    for _ in _sweep_k(nsf, k_max):
        occ = nsf.get_neighbor_frequencies()
        histograms.append(np.bincount(occ // bucket_width))
    return histograms


def class_to_class_matrices(nsf: Finder, k_max: int = None, fuzzy: bool = True,
                            extend_by_element: bool = True) -> List[np.ndarray]:
    """Class-to-class hubness matrices, one per k."""
    k_max = _resolve_k_max(nsf, k_max)
    return [nsf.get_class_to_class_neighbor_matrix(fuzzy=fuzzy, extend_by_element=extend_by_element)
            for _ in _sweep_k(nsf, k_max)]


def _indexes_by_decreasing_value(values: np.ndarray) -> np.ndarray:
    # Stable on the negated values: equal counts keep the lower index first.
    return np.argsort(-np.asarray(values), kind='stable')
