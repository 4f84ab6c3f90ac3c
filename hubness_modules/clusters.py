"""
This file contains the cluster representation consumed by the quality
indices and by the top-hub statistics.

A clustering is given as an association array (point index -> cluster id,
negative ids mark unassigned/noise points). Cluster objects hold member
indexes and a lazily computed centroid. Points labeled as noise (-1) may
sit in a cluster but never count towards its centroid or its distances.
"""

import numpy as np
from typing import List, Optional, Sequence

from hubness_modules.dataset import DataSet
from hubness_modules.distances import Metric, euclidean_distance
from hubness_modules.errors import DataAvailabilityError


class Cluster:
    """A group of point indexes of a dataset, with a lazily computed centroid."""

    def __init__(self, data: DataSet, indexes: Optional[Sequence[int]] = None):
        self.data: DataSet = data
        self.indexes: List[int] = [] if indexes is None else [int(i) for i in indexes]
        self._centroid: Optional[np.ndarray] = None

    def size(self) -> int:
        return len(self.indexes)

    def is_empty(self) -> bool:
        return len(self.indexes) == 0

    def add_instance(self, index: int) -> None:
        self.indexes.append(int(index))
        self._centroid = None

    def get_member_indexes(self) -> List[int]:
        """Member indexes without the noise points."""
        noise = self.data.get_noise_mask()
        return [i for i in self.indexes if not noise[i]]

    def get_members(self) -> np.ndarray:
        if not self.data.has_features():
            raise DataAvailabilityError("Cluster centroids need feature vectors.")
        return self.data.X[self.get_member_indexes()]

    def get_centroid(self) -> np.ndarray:
        """Mean of the non-noise members."""
        if self.is_empty():
            raise DataAvailabilityError("The centroid of an empty cluster is undefined.")
        if self._centroid is None:
            members = self.get_members()
            if len(members) == 0:
                raise DataAvailabilityError("A cluster of noise points has no centroid.")
            self._centroid = members.mean(axis=0)
        return self._centroid

    def centroid_distances(self, metric: Optional[Metric] = None) -> np.ndarray:
        """Distances from the centroid to every non-noise member."""
        metric = metric if metric is not None else euclidean_distance
        centroid = self.get_centroid()
        members = self.get_members()
        distances = np.asarray(metric(centroid, members), dtype=float)
        if distances.shape != (len(members),):
            distances = np.array([metric(centroid, member) for member in members], dtype=float)
        return distances

    def calculate_diameter(self, metric: Optional[Metric] = None) -> float:
        """Largest centroid-to-member distance (0 without non-noise members)."""
        if len(self.get_member_indexes()) == 0:
            return 0.0
        return float(self.centroid_distances(metric).max())

    def average_intra_distance(self, metric: Optional[Metric] = None) -> float:
        """Average centroid-to-member distance (0 without non-noise members)."""
        if len(self.get_member_indexes()) == 0:
            return 0.0
        return float(self.centroid_distances(metric).mean())


def configuration_from_associations(associations: Sequence[int], data: DataSet) -> List[Cluster]:
    """
    Builds one Cluster per id in 0..max(id). Points with a negative id
    belong to no cluster; ids without members give empty clusters.
    """
    associations = np.asarray(associations, dtype=int)
    num_clusters = int(associations.max()) + 1 if len(associations) > 0 else 0
    clusters = [Cluster(data) for _ in range(max(num_clusters, 0))]
    for i, cluster_id in enumerate(associations):
        if cluster_id >= 0:
            clusters[cluster_id].add_instance(i)
    return clusters


def associations_from_configuration(clusters: Sequence[Cluster], num_points: int) -> np.ndarray:
    """Inverse of configuration_from_associations; unclustered points get -1."""
    associations = np.full(num_points, -1, dtype=int)
    for cluster_id, cluster in enumerate(clusters):
        for index in cluster.indexes:
            associations[index] = cluster_id
    return associations
