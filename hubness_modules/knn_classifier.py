"""
This file contains the plain k-nearest-neighbor classifier used by the
instance selectors for their leave-one-out error estimates.

It does not search for neighbors itself: it is handed the precomputed
(possibly prototype-restricted) kNN sets of a NeighborSetFinder and only
votes over the labels found there.
"""

import numpy as np
from typing import Optional, Sequence

from hubness_modules.dataset import DataSet
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.neighbor_sets import NeighborSetFinder


class KNNClassifier:
    """
    Majority vote over precomputed neighbor labels.

    Ties go to the lowest class index; empty neighbor slots (-1) and noise
    neighbors do not vote.
    """

    def __init__(self, data: DataSet, k: Optional[int] = None):
        """
        Initializes the classifier.

        Args:
            data (DataSet): The labeled data the neighbor indexes refer to.
            k (int): How many of the given neighbors vote. None means all.
        """
        if data is None or not data.has_labels():
            raise DataAvailabilityError("The kNN classifier needs labeled data.")
        if k is not None and k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        self.data: DataSet = data
        self.k: Optional[int] = k
        self.labels: np.ndarray = data.get_labels()
        self.num_classes: int = max(data.count_categories(), 1)

    def class_votes(self, neighbors: Sequence[int]) -> np.ndarray:
        """Per-class vote counts of the given neighbor indexes."""
        neighbors = np.asarray(neighbors, dtype=int)
        if self.k is not None:
            neighbors = neighbors[:self.k]
        neighbors = neighbors[neighbors >= 0]
        neighbor_labels = self.labels[neighbors]
        neighbor_labels = neighbor_labels[neighbor_labels >= 0]
        return np.bincount(neighbor_labels, minlength=self.num_classes)

    def classify(self, instance_index: int, neighbors: Sequence[int]) -> int:
        """
        Predicts the label of one point from its precomputed neighbors.

        The point itself is never counted, even if it shows up among the
        given indexes.
        """
        neighbors = np.asarray(neighbors, dtype=int)
        votes = self.class_votes(neighbors[neighbors != instance_index])
        # argmax returns the first maximum, i.e. the lowest tied class.
        return int(np.argmax(votes))

    def classify_all(self, nsf: NeighborSetFinder) -> np.ndarray:
        """Predictions for every point from the current kNN sets of the finder."""
        neighbor_sets = nsf.k_neighbors
        return np.array([self.classify(i, neighbor_sets[i]) for i in range(nsf.size)], dtype=int)

    def count_false_predictions(self, nsf: NeighborSetFinder) -> int:
        """
        Number of labeled points whose kNN vote disagrees with their label.

        With prototype-restricted neighbor sets this is the error of
        classifying the whole data by the prototypes alone.
        """
        if nsf.size != self.data.size():
            raise ConfigurationError("The neighbor set finder covers different points.")
        predictions = self.classify_all(nsf)
        labeled = self.labels >= 0
        return int(np.count_nonzero(predictions[labeled] != self.labels[labeled]))
