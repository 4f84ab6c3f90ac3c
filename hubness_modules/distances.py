"""
This file provides the pluggable distance metrics used to build distance
matrices for the hubness analysis:
1. Euclidean (default)
2. Manhattan (L1, the numeric rendition of HEOM on encoded data)
3. Cosine

All functions accept an optional `weights` vector and broadcast over the
last axis, so `metric(x, X_rows)` returns one distance per row of `X_rows`.
This is how the DistanceMatrix computes a whole triangular row at once.
"""

import numpy as np
from typing import Callable, Dict, Optional

from hubness_modules.errors import ConfigurationError

# --- Type Aliases ---
Metric = Callable[..., np.ndarray]


def euclidean_distance(x1: np.ndarray, x2: np.ndarray, weights: Optional[np.ndarray] = None):
    """
    Calculates the (optionally weighted) Euclidean distance (L2 norm).
    d(q,x) = sqrt( sum( w_f * (q_f - x_f)^2 ) )
    """
    squared_diff = (x1 - x2) ** 2
    if weights is not None:
        squared_diff = weights * squared_diff
    return squared_diff.sum(axis=-1) ** 0.5


def manhattan_distance(x1: np.ndarray, x2: np.ndarray, weights: Optional[np.ndarray] = None):
    """
    Calculates the (optionally weighted) Manhattan distance (L1 norm).
    d(q,x) = sum( w_f * |q_f - x_f| )

    On min-max normalized numeric features and label-encoded nominal ones
    this is the same adaptation of HEOM used for heterogeneous data.
    """
    absolute_diff = np.abs(x1 - x2)
    if weights is not None:
        absolute_diff = weights * absolute_diff
    return absolute_diff.sum(axis=-1)


def cosine_distance(x1: np.ndarray, x2: np.ndarray, weights: Optional[np.ndarray] = None):
    """
    Calculates the Cosine Distance (1 - Cosine Similarity).

    Similarity = (x1 . x2) / (||x1|| * ||x2||)

    A zero vector is at the maximal distance 1.0 from everything.
    """
    if weights is not None:
        x1 = weights * x1
        x2 = weights * x2

    dot_product = (x1 * x2).sum(axis=-1)
    norm_x1 = (x1 ** 2).sum(axis=-1) ** 0.5
    norm_x2 = (x2 ** 2).sum(axis=-1) ** 0.5
    norms = norm_x1 * norm_x2

    with np.errstate(divide='ignore', invalid='ignore'):
        similarity = np.where(norms > 0, dot_product / np.where(norms > 0, norms, 1.0), 0.0)

    # Clamp value to [-1.0, 1.0] to correct floating point inaccuracies
    similarity = np.clip(similarity, -1.0, 1.0)
    distance = np.where(norms > 0, 1.0 - similarity, 1.0)
    if np.ndim(distance) == 0:
        return float(distance)
    return distance


METRICS: Dict[str, Metric] = {
    'Euclidean': euclidean_distance,
    'Manhattan': manhattan_distance,
    'Cosine': cosine_distance,
}


def get_metric(name: str) -> Metric:
    """Looks a metric up by its (case-insensitive) name."""
    for metric_name, metric in METRICS.items():
        if metric_name.lower() == name.lower():
            return metric
    raise ConfigurationError(f"Unknown metric: {name}", available=list(METRICS))
