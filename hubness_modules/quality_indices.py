"""
This file contains the clustering quality indices. Every index is a
QualityIndex subclass with a single `validity()` entry point returning a
"higher is better" score:
1.  Dunn
2.  Davies-Bouldin (inverted)
3.  Calinski-Harabasz
4.  C-Index (complemented)
5.  Tau
6.  Goodman-Kruskal
7.  Rand, Jaccard and Folkes-Mallows (pair counting against labels)
8.  Silhouette and Simplified Silhouette
9.  SD (inverted)
10. CRootK
11. Point-Biserial
12. Hubert's Gamma (normalized)
13. Isolation (kNN same-cluster rate)
14. McClain-Rao (inverted)
15. PBM
16. RS

Points with a negative cluster id and points whose label is -1 (noise) are
left out of every sum. Fewer than two non-empty clusters give the score 0;
a ratio whose denominator vanishes gives +inf.

Calinski-Harabasz, Silhouette and the pair-counting indices delegate the
core computation on the valid points to sklearn.metrics; the rest are
computed here.
"""

import numpy as np
from sklearn.metrics import (
    calinski_harabasz_score, fowlkes_mallows_score, rand_score, silhouette_score,
)
from sklearn.metrics.cluster import pair_confusion_matrix
from typing import Dict, List, Optional, Sequence, Tuple, Type

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.distances import Metric, euclidean_distance
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.neighbor_sets import NeighborSetFinder

# --- Type Aliases ---
ClusterInfo = Tuple[int, np.ndarray, np.ndarray]  # (cluster id, member indexes, centroid)


class QualityIndex:
    """
    Base class for all clustering quality indices.

    Holds read-only references to the cluster associations, the data and
    (optionally) a precomputed distance matrix, which is otherwise computed
    on first use.
    """
    name = 'QualityIndex'
    requires_labels = False

    def __init__(self,
                 cluster_associations: Sequence[int],
                 data: DataSet,
                 dist_matrix: Optional[DistanceMatrix] = None,
                 metric: Optional[Metric] = None):
        if data is None:
            raise DataAvailabilityError("No data provided to the quality index.")
        self.cluster_associations: np.ndarray = np.asarray(cluster_associations, dtype=int)
        self.data: DataSet = data
        self.metric: Metric = metric if metric is not None else euclidean_distance
        self._dist_matrix: Optional[DistanceMatrix] = dist_matrix

        if len(self.cluster_associations) != data.size():
            raise ConfigurationError(
                f"{self.name}: {len(self.cluster_associations)} cluster associations "
                f"for {data.size()} points.")
        if dist_matrix is not None and dist_matrix.size != data.size():
            raise ConfigurationError(
                f"{self.name}: distance matrix size {dist_matrix.size} differs from "
                f"the data size {data.size()}.")
        if self.requires_labels and not data.has_labels():
            raise DataAvailabilityError(f"{self.name} needs ground truth labels.")

    def validity(self) -> float:
        raise NotImplementedError

    # -----------------------------------------------------------------
    #  Shared helpers
    # -----------------------------------------------------------------

    @property
    def dist_matrix(self) -> DistanceMatrix:
        if self._dist_matrix is None:
            if not self.data.has_features():
                raise DataAvailabilityError(f"{self.name} needs distances or feature vectors.")
            self._dist_matrix = DistanceMatrix.compute(self.data.X, self.metric)
        return self._dist_matrix

    def _valid_mask(self) -> np.ndarray:
        return (self.cluster_associations >= 0) & ~self.data.get_noise_mask()

    def _nonempty_cluster_ids(self) -> np.ndarray:
        assoc = self.cluster_associations[self._valid_mask()]
        return np.unique(assoc)

    def _num_clusters(self) -> int:
        return len(self._nonempty_cluster_ids())

    def _clusters_with_centroids(self) -> List[ClusterInfo]:
        if not self.data.has_features():
            raise DataAvailabilityError(f"{self.name} needs feature vectors for centroids.")
        valid = self._valid_mask()
        result: List[ClusterInfo] = []
        for cluster_id in self._nonempty_cluster_ids():
            members = np.flatnonzero(valid & (self.cluster_associations == cluster_id))
            result.append((int(cluster_id), members, self.data.X[members].mean(axis=0)))
        return result

    def _distance(self, x1: np.ndarray, x2: np.ndarray) -> float:
        return float(self.metric(x1, x2))

    def _distances_to(self, point: np.ndarray, rows: np.ndarray) -> np.ndarray:
        values = np.asarray(self.metric(point, rows), dtype=float)
        if values.shape != (len(rows),):
            values = np.array([self.metric(point, row) for row in rows], dtype=float)
        return values

    def _pair_distances(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Distances of all pairs of valid points, with a same-cluster flag
        and the cluster ids of both ends (first, second).
        """
        valid_idx = np.flatnonzero(self._valid_mask())
        square = self.dist_matrix.to_square()
        first, second = np.triu_indices(len(valid_idx), 1)
        distances = square[valid_idx[first], valid_idx[second]]
        assoc = self.cluster_associations[valid_idx]
        same = assoc[first] == assoc[second]
        return distances, same, np.stack([assoc[first], assoc[second]])


def _safe_ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return float('inf') if numerator > 0 else 0.0
    return numerator / denominator


def _pairs(n) -> float:
    n = np.asarray(n, dtype=float)
    return n * (n - 1) / 2.0


def _count_discordant(intra: np.ndarray, inter: np.ndarray) -> int:
    """
    Number of (intra, inter) distance pairs with intra >= inter, by merging
    against the sorted inter distances instead of comparing every pair.
    """
    inter_sorted = np.sort(inter)
    return int(np.searchsorted(inter_sorted, intra, side='right').sum())


# -----------------------------------------------------------------
#  Centroid-based indices
# -----------------------------------------------------------------

class DunnIndex(QualityIndex):
    """Minimal centroid-to-centroid distance over the maximal cluster diameter."""
    name = 'Dunn'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) < 2:
            return 0.0

        max_diameter = 0.0
        for _, members, centroid in clusters:
            diameter = self._distances_to(centroid, self.data.X[members]).max()
            max_diameter = max(max_diameter, float(diameter))

        min_centroid_dist = float('inf')
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                min_centroid_dist = min(min_centroid_dist,
                                        self._distance(clusters[i][2], clusters[j][2]))
        return _safe_ratio(min_centroid_dist, max_diameter)


class DaviesBouldinIndex(QualityIndex):
    """
    Inverse of the Davies-Bouldin index:
        DB = mean_i max_{j != i} (s_i + s_j) / d(c_i, c_j)
    where s_i is the average centroid-to-member distance of cluster i.
    Coinciding centroids give 0.
    """
    name = 'DaviesBouldin'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) < 2:
            return 0.0
        dispersions = [float(self._distances_to(centroid, self.data.X[members]).mean())
                       for _, members, centroid in clusters]

        db_sum = 0.0
        for i in range(len(clusters)):
            worst = 0.0
            for j in range(len(clusters)):
                if i == j:
                    continue
                centroid_dist = self._distance(clusters[i][2], clusters[j][2])
                if centroid_dist == 0:
                    return 0.0
                worst = max(worst, (dispersions[i] + dispersions[j]) / centroid_dist)
            db_sum += worst
        return _safe_ratio(1.0, db_sum / len(clusters))


class CalinskiHarabaszIndex(QualityIndex):
    """
    Between/within scatter trace ratio scaled by (n - K) / (K - 1), from
    scikit-learn. Clusters without any inner scatter give +inf.
    """
    name = 'CalinskiHarabasz'

    def validity(self) -> float:
        if not self.data.has_features():
            raise DataAvailabilityError(f"{self.name} needs feature vectors for centroids.")
        valid = self._valid_mask()
        X = self.data.X[valid]
        assoc = self.cluster_associations[valid]
        cluster_ids = np.unique(assoc)
        if len(cluster_ids) < 2 or len(assoc) <= len(cluster_ids):
            return 0.0

        if all(np.ptp(X[assoc == cluster_id], axis=0).max() == 0 for cluster_id in cluster_ids):
            return float('inf') if np.ptp(X, axis=0).max() > 0 else 0.0
        return float(calinski_harabasz_score(X, assoc))


class SimplifiedSilhouetteIndex(QualityIndex):
    """Silhouette computed from point-to-centroid distances."""
    name = 'SimplifiedSilhouette'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) < 2:
            return 0.0
        centroids = np.array([centroid for _, _, centroid in clusters])
        position = {cluster_id: pos for pos, (cluster_id, _, _) in enumerate(clusters)}

        scores = []
        for cluster_id, members, _ in clusters:
            own = position[cluster_id]
            for i in members:
                dists = self._distances_to(self.data.X[i], centroids)
                a = dists[own]
                b = np.delete(dists, own).min()
                denom = max(abs(a), abs(b))
                scores.append(0.0 if denom == 0 else (b - a) / denom)
        return float(np.mean(scores))


class SDIndex(QualityIndex):
    """
    Inverse of the SD index, alpha * scatter + dist, where
        scatter = sum_i ||var(C_i)|| / (K * ||var(X)||)
        dist    = (Dmax / Dmin) * sum_i 1 / sum_j d(c_i, c_j)
    alpha weighs the scatter term and must be given.
    """
    name = 'SD'

    def __init__(self, cluster_associations, data, dist_matrix=None, metric=None,
                 alpha: Optional[float] = None):
        super().__init__(cluster_associations, data, dist_matrix, metric)
        self.alpha: Optional[float] = alpha

    def validity(self) -> float:
        if self.alpha is None or not np.isfinite(self.alpha):
            raise ConfigurationError("SD index: the scatter weight alpha needs to be set.")
        clusters = self._clusters_with_centroids()
        num_clusters = len(clusters)
        if num_clusters < 2:
            return 0.0

        centroid_dists = np.zeros((num_clusters, num_clusters))
        for i in range(num_clusters):
            for j in range(i + 1, num_clusters):
                centroid_dists[i, j] = centroid_dists[j, i] = self._distance(
                    clusters[i][2], clusters[j][2])
        off_diagonal = centroid_dists[~np.eye(num_clusters, dtype=bool)]
        d_max, d_min = off_diagonal.max(), off_diagonal.min()
        if d_min <= 0:
            return 0.0
        dist = (d_max / d_min) * float(np.sum(1.0 / centroid_dists.sum(axis=1)))

        data_variance_norm = float(np.linalg.norm(self.data.X[self._valid_mask()].var(axis=0)))
        scatter = 0.0
        if data_variance_norm > 0:
            cluster_norms = sum(float(np.linalg.norm(self.data.X[members].var(axis=0)))
                                for _, members, _ in clusters)
            scatter = cluster_norms / (data_variance_norm * num_clusters)
        return _safe_ratio(1.0, self.alpha * scatter + dist)


class CRootKIndex(QualityIndex):
    """
    Per-feature root variance ratio averaged over features and scaled by 1/sqrt(K):
        sum_f sqrt((SST_f - SSW_f) / SST_f) / (sqrt(K) * num_features)
    Features with no total variance are skipped in the sum.
    """
    name = 'CRootK'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) == 0:
            return 0.0
        valid = self._valid_mask()
        global_centroid = self.data.X[valid].mean(axis=0)
        sst = ((self.data.X[valid] - global_centroid) ** 2).sum(axis=0)
        ssw = np.zeros_like(sst)
        for _, members, centroid in clusters:
            ssw += ((self.data.X[members] - centroid) ** 2).sum(axis=0)

        positive = sst > 0
        root_ratio_sum = float(np.sqrt((sst[positive] - ssw[positive]) / sst[positive]).sum())
        num_features = self.data.X.shape[1]
        return root_ratio_sum / (np.sqrt(len(clusters)) * num_features)


class PBMIndex(QualityIndex):
    """
    PBM = ((1 / K) * (E1 / EK) * DK)^2 with E1 the summed distance to the
    global centroid, EK the summed distance to the own centroids and DK the
    largest centroid-to-centroid distance.
    """
    name = 'PBM'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        num_clusters = len(clusters)
        if num_clusters < 2:
            return 0.0
        valid = self._valid_mask()
        global_centroid = self.data.X[valid].mean(axis=0)

        e1 = 0.0
        ek = 0.0
        dk = 0.0
        for pos, (_, members, centroid) in enumerate(clusters):
            e1 += float(self._distances_to(global_centroid, self.data.X[members]).sum())
            ek += float(self._distances_to(centroid, self.data.X[members]).sum())
            for other in clusters[pos + 1:]:
                dk = max(dk, self._distance(centroid, other[2]))
        if ek == 0:
            return float('inf')
        return ((e1 / ek) * (dk / num_clusters)) ** 2


class RSIndex(QualityIndex):
    """R-squared: the fraction of the total sum of squares between clusters, (SST - SSW) / SST."""
    name = 'RS'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) < 2:
            return 0.0
        valid = self._valid_mask()
        global_centroid = self.data.X[valid].mean(axis=0)
        sst = float(((self.data.X[valid] - global_centroid) ** 2).sum())
        ssw = sum(float(((self.data.X[members] - centroid) ** 2).sum())
                  for _, members, centroid in clusters)
        if sst == 0:
            return 0.0
        return (sst - ssw) / sst


# -----------------------------------------------------------------
#  Pairwise distance indices
# -----------------------------------------------------------------

class CIndex(QualityIndex):
    """
    Complement of the C-Index: with S the sum of the n_w intra-cluster
    distances and S_min / S_max the sums of the n_w smallest / largest
    distances overall, returns 1 - (S - S_min) / (S_max - S_min).
    """
    name = 'CIndex'

    def validity(self) -> float:
        distances, same, _ = self._pair_distances()
        num_intra = int(same.sum())
        if num_intra == 0:
            return 0.0
        sorted_dists = np.sort(distances)
        intra_sum = float(distances[same].sum())
        min_sum = float(sorted_dists[:num_intra].sum())
        max_sum = float(sorted_dists[-num_intra:].sum())
        if max_sum == min_sum:
            return 0.0
        return 1.0 - (intra_sum - min_sum) / (max_sum - min_sum)


class TauIndex(QualityIndex):
    """
    Tau between the pair distances and the same/different cluster indicator:
        (Nc - Nd) / sqrt(P * (P - ties))
    with Nc / Nd the concordant / discordant (intra, inter) comparisons,
    P = T(T-1)/2 for T distances and ties from same-cluster and
    different-cluster pair groups.
    """
    name = 'Tau'

    def validity(self) -> float:
        if self._num_clusters() < 2:
            return 0.0
        distances, same, _ = self._pair_distances()
        intra, inter = distances[same], distances[~same]
        num_intra, num_inter = len(intra), len(inter)

        discordant = _count_discordant(intra, inter)
        concordant = num_intra * num_inter - discordant

        total = num_intra + num_inter
        max_pairs = _pairs(total)
        ties = _pairs(num_intra) + _pairs(num_inter)
        denominator = np.sqrt(max_pairs * (max_pairs - ties))
        if denominator == 0:
            return 0.0
        return float((concordant - discordant) / denominator)


class GoodmanKruskalIndex(QualityIndex):
    """(Nc - Nd) / (Nc + Nd) over (intra, inter) distance comparisons."""
    name = 'GoodmanKruskal'

    def validity(self) -> float:
        if self._num_clusters() < 2:
            return 0.0
        distances, same, _ = self._pair_distances()
        intra, inter = distances[same], distances[~same]
        discordant = _count_discordant(intra, inter)
        concordant = len(intra) * len(inter) - discordant
        if concordant + discordant == 0:
            return 0.0
        return (concordant - discordant) / (concordant + discordant)


class SilhouetteIndex(QualityIndex):
    """
    Average silhouette width over the precomputed distances, from
    scikit-learn. For a point with average distance a to its own cluster and
    b to the closest other cluster, s = (b - a) / max(a, b). Points in
    singleton clusters score 0, so all-singleton clusterings give 0.
    """
    name = 'Silhouette'

    def validity(self) -> float:
        valid_idx = np.flatnonzero(self._valid_mask())
        assoc = self.cluster_associations[valid_idx]
        num_clusters = len(np.unique(assoc))
        if num_clusters < 2 or num_clusters >= len(valid_idx):
            return 0.0
        square = self.dist_matrix.to_square()[np.ix_(valid_idx, valid_idx)]
        return float(silhouette_score(square, assoc, metric='precomputed'))


class PointBiserialIndex(QualityIndex):
    """(mean inter - mean intra) * sqrt(n_inter * n_intra / n_total^2) / std(all distances)."""
    name = 'PointBiserial'

    def validity(self) -> float:
        if self._num_clusters() < 2:
            return 0.0
        distances, same, _ = self._pair_distances()
        intra, inter = distances[same], distances[~same]
        if len(intra) == 0 or len(inter) == 0:
            return 0.0
        std = float(distances.std())
        if std == 0:
            return 0.0
        total = len(distances)
        return float((inter.mean() - intra.mean())
                     * np.sqrt(len(inter) * len(intra) / total ** 2) / std)


class HubertsGammaIndex(QualityIndex):
    """
    Normalized Hubert's Gamma: the correlation between the pair distances
    and the distances between the centroids of the clusters of each pair
    (0 for same-cluster pairs).
    """
    name = 'HubertsGamma'

    def validity(self) -> float:
        clusters = self._clusters_with_centroids()
        if len(clusters) < 2:
            return 0.0
        position = {cluster_id: pos for pos, (cluster_id, _, _) in enumerate(clusters)}
        centroid_dists = np.zeros((len(clusters), len(clusters)))
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                centroid_dists[i, j] = centroid_dists[j, i] = self._distance(
                    clusters[i][2], clusters[j][2])

        distances, _, ends = self._pair_distances()
        first = np.array([position[c] for c in ends[0]], dtype=int)
        second = np.array([position[c] for c in ends[1]], dtype=int)
        proximity = centroid_dists[first, second]

        std_product = distances.std() * proximity.std()
        if std_product == 0:
            return 0.0
        covariance = np.mean((distances - distances.mean()) * (proximity - proximity.mean()))
        return float(covariance / std_product)


class McClainRaoIndex(QualityIndex):
    """
    Inverse of the McClain-Rao index: mean inter-cluster distance over mean
    intra-cluster distance.
    """
    name = 'McClainRao'

    def validity(self) -> float:
        if self._num_clusters() < 2:
            return 0.0
        distances, same, _ = self._pair_distances()
        intra, inter = distances[same], distances[~same]
        if len(inter) == 0:
            return 0.0
        if len(intra) == 0:
            return float('inf')
        return _safe_ratio(float(inter.mean()), float(intra.mean()))


class IsolationIndex(QualityIndex):
    """
    Average fraction of a point's k nearest neighbors that share its cluster.
    Noise and unassigned points are skipped both as queries and as neighbors.
    Uses the given NeighborSetFinder or builds one with k.
    """
    name = 'Isolation'

    def __init__(self, cluster_associations, data, dist_matrix=None, metric=None,
                 k: int = 5, nsf=None):
        super().__init__(cluster_associations, data, dist_matrix, metric)
        self.k: int = k
        self.nsf = nsf

    def validity(self) -> float:
        if self._num_clusters() < 2:
            return 0.0
        nsf = self.nsf
        if nsf is None:
            nsf = NeighborSetFinder(self.data, self.dist_matrix, self.metric)
            nsf.calculate_neighbor_sets(self.k)
        valid = self._valid_mask()

        rates = []
        for i, row in enumerate(nsf.k_neighbors):
            if not valid[i]:
                continue
            row = row[row >= 0]
            row = row[valid[row]]
            if len(row) == 0:
                continue
            same = self.cluster_associations[row] == self.cluster_associations[i]
            rates.append(float(same.mean()))
        return float(np.mean(rates)) if rates else 0.0


# -----------------------------------------------------------------
#  Pair counting against ground truth labels
# -----------------------------------------------------------------

class _PairCountingIndex(QualityIndex):
    """
    Pair counting between the clustering and the labels, with the counts
    of scikit-learn's pair confusion matrix:
        a: same cluster, same class      b: same cluster, different class
        c: different cluster, same class d: different cluster, different class
    Fewer than two valid points give 0.
    """
    requires_labels = True

    def _valid_labelings(self) -> Tuple[np.ndarray, np.ndarray]:
        """(class labels, cluster ids) of the valid points."""
        valid = self._valid_mask()
        return self.data.get_labels()[valid], self.cluster_associations[valid]


class RandIndex(_PairCountingIndex):
    """(a + d) / number of pairs."""
    name = 'Rand'

    def validity(self) -> float:
        labels, assoc = self._valid_labelings()
        if len(assoc) < 2:
            return 0.0
        return float(rand_score(labels, assoc))


class JaccardIndex(_PairCountingIndex):
    """a / (a + b + c)."""
    name = 'Jaccard'

    def validity(self) -> float:
        labels, assoc = self._valid_labelings()
        if len(assoc) < 2:
            return 0.0
        # Rows: same class or not, columns: same cluster or not (ordered pairs)
        counts = pair_confusion_matrix(labels, assoc)
        a, b, c = counts[1, 1], counts[0, 1], counts[1, 0]
        return 0.0 if a + b + c == 0 else float(a / (a + b + c))


class FolkesMallowsIndex(_PairCountingIndex):
    """a / sqrt((a + b) * (a + c))."""
    name = 'FolkesMallows'

    def validity(self) -> float:
        labels, assoc = self._valid_labelings()
        if len(assoc) < 2:
            return 0.0
        return float(fowlkes_mallows_score(labels, assoc))


QUALITY_INDICES: Dict[str, Type[QualityIndex]] = {
    index_class.name: index_class for index_class in [
        DunnIndex, DaviesBouldinIndex, CalinskiHarabaszIndex, CIndex, TauIndex,
        GoodmanKruskalIndex, RandIndex, JaccardIndex, FolkesMallowsIndex,
        SilhouetteIndex, SimplifiedSilhouetteIndex, SDIndex, CRootKIndex,
        PointBiserialIndex, HubertsGammaIndex, IsolationIndex, McClainRaoIndex,
        PBMIndex, RSIndex,
    ]
}
