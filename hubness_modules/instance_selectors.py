"""
This file contains the from-scratch implementations of the hubness-aware
instance selection (data reduction) algorithms:
1. Random stratified selection
2. Wilson's Edited Nearest Neighbour (Wilson72 / ENN)
3. Generalized Condensed Nearest Neighbour (GCNN) and plain CNN
4. Editing by RBF class-probability estimates (ENRBF)
5. Hit-Miss score selection (HMScore)
6. Carving
7. Iterative Case Filtering (ICF)
8. INSIGHT (ranking by good/bad k-occurrence scores)
9. Reverse Nearest Neighbor Reduction (RNNR)
10. RT3-style thinning of the edited data (IPT_RT3)

Every selector is built over a NeighborSetFinder of the full data and
returns a sorted list of original point indices (the prototypes). All of
them finish with the same class-completeness repair: a class that has
members but no prototype gets its first member (in index order) added.

Once prototypes are selected, `calculate_prototype_hubness(k)` recomputes
the occurrence statistics of the prototypes in the kNN sets of all points,
reusing the parent kNN sets as seeds for the restricted search.
"""

import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple, Type, Union

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.hit_miss_network import HitMissNetwork
from hubness_modules.hubness_stats import population_stdev
from hubness_modules.knn_classifier import KNNClassifier
from hubness_modules.neighbor_sets import NeighborSetFinder

# --- Type Aliases ---
PrototypeIndexes = List[int]
IndexMap = Tuple[int, ...]  # local index -> original index

LAPLACE_ESTIMATOR = 0.001
DEFAULT_SELECTION_K = 3


def repair_class_completeness(indexes: Sequence[int], labels: np.ndarray) -> PrototypeIndexes:
    """
    Adds the first member (in index order) of every class that has members
    but no selected prototype, then returns the duplicate-free indexes sorted
    ascending. Noise points (label -1) never count as a class.
    """
    selected = sorted(set(int(i) for i in indexes))
    labels = np.asarray(labels)
    if len(labels) == 0:
        return selected

    num_classes = int(labels.max()) + 1 if labels.max() >= 0 else 0
    covered = np.zeros(num_classes, dtype=bool)
    for i in selected:
        if labels[i] >= 0:
            covered[labels[i]] = True

    for i, label in enumerate(labels):
        if label >= 0 and not covered[label]:
            selected.append(i)
            covered[label] = True
    return sorted(selected)


def _accepts(errors_new: int, errors_old: int, permit_no_change: bool) -> bool:
    return errors_new <= errors_old if permit_no_change else errors_new < errors_old


class InstanceSelector:
    """
    Base class of the selectors.

    Holds read-only references to the full-data kNN structure and the
    selected prototypes, plus the prototype hubness arrays filled in by
    `calculate_prototype_hubness`.
    """

    name: str = 'InstanceSelector'

    def __init__(self, nsf: NeighborSetFinder, random_state: Optional[int] = None):
        """
        Initializes the selector.

        Args:
            nsf (NeighborSetFinder): kNN structure over the full, labeled data.
                                     Selectors that need kNN sets compute
                                     them on it when it holds none.
            random_state (int): Seed for the randomized selectors.
        """
        if nsf is None:
            raise DataAvailabilityError("Instance selection needs a neighbor set finder.")
        if nsf.data is None or not nsf.data.has_labels():
            raise DataAvailabilityError("Instance selection needs labeled data.")

        self.nsf: NeighborSetFinder = nsf
        self.data: DataSet = nsf.data
        self.labels: np.ndarray = self.data.get_labels()
        self.num_classes: int = self.data.count_categories()
        self.random_state: Optional[int] = random_state
        self.rng: np.random.Generator = np.random.default_rng(random_state)

        self.prototype_indexes: PrototypeIndexes = []

        # Prototype hubness, filled in by calculate_prototype_hubness(k)
        self.k: int = 0
        self.proto_nsf: Optional[NeighborSetFinder] = None
        self.proto_hubness: Optional[np.ndarray] = None
        self.proto_good_hubness: Optional[np.ndarray] = None
        self.proto_bad_hubness: Optional[np.ndarray] = None
        self.proto_class_hubness: Optional[np.ndarray] = None
        self.proto_neighbor_sets: Optional[np.ndarray] = None

    @property
    def size(self) -> int:
        return self.data.size()

    # -----------------------------------------------------------------
    #  Selection entry points
    # -----------------------------------------------------------------

    def reduce_data_set(self) -> PrototypeIndexes:
        raise NotImplementedError

    def reduce_data_set_to(self, target: Union[int, float]) -> PrototypeIndexes:
        """
        Selects a given number of prototypes (int) or a fraction of the data
        (float in (0, 1]). Selectors without a size control ignore the target
        and run their own stopping rule.
        """
        if isinstance(target, float):
            if not 0 < target <= 1:
                raise ConfigurationError(f"Retained fraction must be in (0, 1], got {target}.")
            num_prototypes = int(self.size * target)
        else:
            num_prototypes = int(target)
        if num_prototypes <= 0:
            raise ConfigurationError(f"Number of prototypes must be positive, got {num_prototypes}.")
        return self._reduce_to_count(num_prototypes)

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        return self.reduce_data_set()

    def _finish(self, indexes: Sequence[int]) -> PrototypeIndexes:
        self.prototype_indexes = repair_class_completeness(indexes, self.labels)
        retained = len(self.prototype_indexes)
        reduction_pct = (1 - retained / self.size) * 100
        print(f"    → {self.name} complete. Retained {retained}/{self.size} ({reduction_pct:.1f}% reduction)")
        return self.prototype_indexes

    def get_reduced_data_set(self) -> DataSet:
        return self.data.subsample(self.prototype_indexes)

    def get_prototype_label(self, index: int) -> int:
        return int(self.labels[self.prototype_indexes[index]])

    def _finder_at(self, k: int) -> NeighborSetFinder:
        """The full-data finder at neighborhood size k, without changing its current k."""
        if not self.nsf.has_neighbor_sets():
            self.nsf.calculate_neighbor_sets(k)
        if k == self.nsf.current_k:
            return self.nsf
        return self.nsf.get_sub_nsf(k)

    def _neighbor_sets(self, k: int) -> np.ndarray:
        return self._finder_at(k).k_neighbors

    def _empty_finder(self) -> NeighborSetFinder:
        return NeighborSetFinder(self.data, self.nsf.dist_matrix, self.nsf.metric, self.nsf.num_threads)

    # -----------------------------------------------------------------
    #  Prototype hubness
    # -----------------------------------------------------------------

    def calculate_prototype_hubness(self, k: int) -> None:
        """
        Occurrence statistics of the prototypes in the k-NN sets of all
        points, with neighbors drawn from the prototypes only.

        A prototype never counts as its own neighbor. The stored neighbor
        sets hold prototype-local indexes (positions in prototype_indexes).
        """
        if k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        if not self.prototype_indexes:
            raise DataAvailabilityError("No prototypes have been selected yet.")

        protos = np.asarray(self.prototype_indexes, dtype=int)
        proto_nsf = self._empty_finder()
        seed_finder = self.nsf if self.nsf.has_neighbor_sets() else None
        proto_nsf.calculate_restricted_neighbor_sets(k, protos, seed_finder=seed_finder)

        local = np.full(self.size, -1, dtype=int)
        local[protos] = np.arange(len(protos))
        neighbors = proto_nsf.k_neighbors
        valid = neighbors >= 0

        self.k = k
        self.proto_nsf = proto_nsf
        self.proto_neighbor_sets = np.where(valid, local[np.where(valid, neighbors, 0)], -1)
        self.proto_hubness = proto_nsf.get_neighbor_frequencies()[protos]
        self.proto_good_hubness = proto_nsf.get_good_frequencies()[protos]
        self.proto_bad_hubness = proto_nsf.get_bad_frequencies()[protos]
        self.proto_class_hubness = proto_nsf.get_class_data_neighbor_relation()[:, protos]

    def _require_prototype_hubness(self) -> None:
        if self.proto_hubness is None:
            raise DataAvailabilityError("Prototype hubness has not been calculated yet.")

    def get_class_data_neighbor_relation_fuzzy(self, laplace: float = LAPLACE_ESTIMATOR) -> np.ndarray:
        """
        C x P fuzzy class memberships of the prototypes: each prototype counts
        once for its own class, on top of its class-conditional occurrences.
            (class_hubness[c, p] + [c == label(p)] + laplace) / (hubness[p] + 1 + C * laplace)
        """
        self._require_prototype_hubness()
        relation = self._extended_class_hubness()
        return (relation + laplace) / (self.proto_hubness + 1 + self.num_classes * laplace)

    def get_class_data_neighbor_relation_bayesian(self, laplace: float = LAPLACE_ESTIMATOR) -> np.ndarray:
        """
        C x P class-conditional occurrence likelihoods of the prototypes:
            (class_hubness[c, p] + [c == label(p)] + laplace) / ((k + 1) * |c| + P * laplace)
        """
        self._require_prototype_hubness()
        relation = self._extended_class_hubness()
        class_priors = self.data.get_class_frequencies().astype(float)
        num_prototypes = len(self.prototype_indexes)
        return (relation + laplace) / ((self.k + 1) * class_priors[:, None] + num_prototypes * laplace)

    def _extended_class_hubness(self) -> np.ndarray:
        relation = self.proto_class_hubness.astype(float)
        proto_labels = self.labels[self.prototype_indexes]
        labeled = proto_labels >= 0
        relation[proto_labels[labeled], np.flatnonzero(labeled)] += 1
        return relation

    def calculate_class_to_class_priors(self, fuzzy: bool = True,
                                        laplace: float = LAPLACE_ESTIMATOR) -> np.ndarray:
        """
        C x C matrix; row = class of the prototype neighbor, column = class of
        the query point. The fuzzy form normalizes a row by the total
        occurrences of that class's prototypes, the Bayesian form by the
        class size.
        """
        self._require_prototype_hubness()
        num_classes = self.num_classes
        neighbors = self.proto_neighbor_sets
        valid = neighbors >= 0
        proto_labels = self.labels[self.prototype_indexes]
        neighbor_classes = proto_labels[neighbors[valid]]
        query_classes = np.broadcast_to(self.labels[:, None], neighbors.shape)[valid]
        keep = (query_classes >= 0) & (neighbor_classes >= 0)

        priors = np.zeros((num_classes, num_classes), dtype=float)
        np.add.at(priors, (neighbor_classes[keep], query_classes[keep]), 1)
        if fuzzy:
            totals = priors.sum(axis=1)
        else:
            totals = self.data.get_class_frequencies().astype(float)
        return (priors + laplace) / (totals[:, None] + num_classes * laplace)

    def get_knn_hubness_weighting_scheme(self) -> np.ndarray:
        """
        Per-prototype vote weights exp(-(bad - mean) / stdev) over the bad
        occurrence counts. All weights are 1 when the bad counts do not vary.
        """
        self._require_prototype_hubness()
        bad = self.proto_bad_hubness.astype(float)
        stdev = population_stdev(bad)
        if stdev == 0:
            return np.ones(len(bad))
        return np.exp(-(bad - bad.mean()) / stdev)


# -----------------------------------------------------------------
#  Algorithm 1: Random stratified selection
# -----------------------------------------------------------------

class RandomSelector(InstanceSelector):
    """Samples the same fraction of every class, at least one point per class."""

    name = 'Random'

    def __init__(self, nsf: NeighborSetFinder, fraction: float = 0.2,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if not 0 < fraction <= 1:
            raise ConfigurationError(f"Retained fraction must be in (0, 1], got {fraction}.")
        self.fraction: float = fraction

    def reduce_data_set(self) -> PrototypeIndexes:
        return self._reduce_to_count(int(self.size * self.fraction))

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        perc_retained = num_prototypes / self.size
        print(f"  [IS] Running Random selection (fraction={perc_retained:.2f})...")
        protos: List[int] = []
        for members in self.data.get_class_indexes():
            if len(members) == 0:
                continue
            num_class_protos = min(len(members), max(1, int(perc_retained * len(members))))
            protos.extend(self.rng.choice(members, size=num_class_protos, replace=False).tolist())
        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 2: Wilson's Edited Nearest Neighbour (Wilson72)
# -----------------------------------------------------------------

class Wilson72(InstanceSelector):
    """
    Keeps the points whose kNN sets hold a majority (k // 2 + 1) of their
    own label, plus the first point seen of each class.
    """

    name = 'Wilson72'

    def __init__(self, nsf: NeighborSetFinder, k: Optional[int] = None,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if k is not None and k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        self.k_selection: Optional[int] = k

    def reduce_data_set(self) -> PrototypeIndexes:
        k = self.k_selection
        if k is None:
            k = self.nsf.current_k if self.nsf.has_neighbor_sets() else DEFAULT_SELECTION_K
        print(f"  [IS] Running Wilson72 (k={k})...")
        neighbors = self._neighbor_sets(k)
        threshold = k // 2 + 1
        class_counts = np.zeros(max(self.num_classes, 1), dtype=int)

        protos: List[int] = []
        for i in range(self.size):
            label = self.labels[i]
            if label < 0:
                continue
            row = neighbors[i]
            row = row[row >= 0]
            same_count = int(np.count_nonzero(self.labels[row] == label))
            if same_count >= threshold or class_counts[label] == 0:
                protos.append(i)
                class_counts[label] += 1
        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 3: Generalized Condensed Nearest Neighbour (GCNN), CNN
# -----------------------------------------------------------------

class GCNN(InstanceSelector):
    """
    Starts from one random prototype per class and keeps promoting a random
    "unabsorbed" point until none is left. A point is absorbed when its
    nearest enemy prototype is farther than its nearest friend prototype by
    more than rho times the smallest positive distance between classes.
    """

    name = 'GCNN'

    def __init__(self, nsf: NeighborSetFinder, rho: float = 0.99,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if rho < 0:
            raise ConfigurationError(f"rho must be non-negative, got {rho}.")
        self.rho: float = rho
        self.nearest_friend_dist: Optional[np.ndarray] = None
        self.nearest_enemy_dist: Optional[np.ndarray] = None

    def reduce_data_set(self) -> PrototypeIndexes:
        return self._finish(self._condense())

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        protos = self._condense()
        subset = self.rng.permutation(protos)[:num_prototypes]
        return self._finish(subset.tolist())

    def _min_heterogeneous_distance(self, square: np.ndarray) -> float:
        labeled = np.flatnonzero(self.labels >= 0)
        sub = square[np.ix_(labeled, labeled)]
        sub_labels = self.labels[labeled]
        heterogeneous = (sub_labels[:, None] != sub_labels[None, :]) & (sub > 0)
        if not heterogeneous.any():
            return 0.0
        return float(sub[heterogeneous].min())

    def _condense(self) -> List[int]:
        print(f"  [IS] Running {self.name} (rho={self.rho})...")
        square = self.nsf.dist_matrix.to_square()
        labeled = self.labels >= 0
        is_proto = np.zeros(self.size, dtype=bool)
        friend = np.full(self.size, np.inf)
        enemy = np.full(self.size, np.inf)
        protos: List[int] = []

        def promote(choice: int) -> None:
            is_proto[choice] = True
            protos.append(choice)
            dists = square[choice]
            same = self.labels == self.labels[choice]
            np.minimum(friend, dists, out=friend, where=same)
            np.minimum(enemy, dists, out=enemy, where=~same)

        for members in self.data.get_class_indexes():
            if len(members) > 0:
                promote(int(self.rng.choice(members)))

        absorb_margin = self.rho * self._min_heterogeneous_distance(square)
        while True:
            with np.errstate(invalid='ignore'):
                absorbed = (enemy - friend) > absorb_margin
            unabsorbed = np.flatnonzero(labeled & ~is_proto & ~absorbed)
            if len(unabsorbed) == 0:
                break
            promote(int(self.rng.choice(unabsorbed)))

        self.nearest_friend_dist = friend
        self.nearest_enemy_dist = enemy
        return protos


class CNN(GCNN):
    """Condensed Nearest Neighbour: GCNN with rho = 0, no size control."""

    name = 'CNN'

    def __init__(self, nsf: NeighborSetFinder, random_state: Optional[int] = None):
        super().__init__(nsf, rho=0.0, random_state=random_state)

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        return self.reduce_data_set()


# -----------------------------------------------------------------
#  Algorithm 4: Editing by RBF class-probability estimates (ENRBF)
# -----------------------------------------------------------------

class ENRBF(InstanceSelector):
    """
    Estimates each point's class probabilities with an RBF kernel over all
    other labeled points and keeps it when its own class probability is at
    least alpha times that of every other class.
    """

    name = 'ENRBF'
    NUM_SIGMA_SAMPLES = 50

    def __init__(self, nsf: NeighborSetFinder, alpha: float = 0.9,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        self.alpha: float = alpha

    def _kernel_width(self, square: np.ndarray) -> float:
        first = self.rng.integers(self.size, size=self.NUM_SIGMA_SAMPLES)
        second = (first + self.rng.integers(1, self.size, size=self.NUM_SIGMA_SAMPLES)) % self.size
        sigma = population_stdev(square[first, second])
        return sigma if sigma > 0 else 1.0

    def reduce_data_set(self) -> PrototypeIndexes:
        if self.size < 2:
            raise ConfigurationError("ENRBF needs at least two points.")
        print(f"  [IS] Running ENRBF (alpha={self.alpha})...")
        square = self.nsf.dist_matrix.to_square()
        sigma = self._kernel_width(square)

        rbf = np.exp(-(square ** 2) / sigma)
        np.fill_diagonal(rbf, 0.0)
        labeled = self.labels >= 0
        rbf[:, ~labeled] = 0.0
        totals = rbf.sum(axis=1)

        class_probs = np.zeros((self.size, max(self.num_classes, 1)))
        for c in range(self.num_classes):
            class_probs[:, c] = rbf[:, self.labels == c].sum(axis=1)
        positive = totals > 0
        class_probs[positive] /= totals[positive, None]

        protos: List[int] = []
        for i in np.flatnonzero(labeled):
            own = class_probs[i, self.labels[i]]
            if np.all(own >= self.alpha * np.delete(class_probs[i], self.labels[i])):
                protos.append(int(i))
        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 5: Hit-Miss score selection (HMScore)
# -----------------------------------------------------------------

class HitMissScoreSelector(InstanceSelector):
    """
    Ranks the points by their hit-miss score, takes a core of the best ones
    and greedily extends it down the ranking while the kNN error of the
    whole data, classified by the prototypes alone, keeps improving.
    """

    name = 'HMScore'

    def __init__(self, nsf: NeighborSetFinder, k_hm: int = 1,
                 permit_no_change_inclusions: bool = True,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if k_hm <= 0:
            raise ConfigurationError(f"Hit-miss neighborhood size must be positive, got {k_hm}.")
        self.k_hm: int = k_hm
        self.permit_no_change_inclusions: bool = permit_no_change_inclusions
        self.hm_network: Optional[HitMissNetwork] = None

    def _ranked_points(self) -> Tuple[np.ndarray, np.ndarray]:
        self.hm_network = HitMissNetwork(self.data, self.nsf.dist_matrix, self.k_hm)
        self.hm_network.generate_from_finder(self.nsf)
        scores = self.hm_network.compute_all_hm_scores()
        return scores, np.argsort(-scores, kind='stable')

    def reduce_data_set(self) -> PrototypeIndexes:
        print(f"  [IS] Running HMScore (k_hm={self.k_hm})...")
        if not self.nsf.has_neighbor_sets():
            self.nsf.calculate_neighbor_sets(self.k_hm)
        scores, perm = self._ranked_points()
        classifier = KNNClassifier(self.data)
        baseline_errors = classifier.count_false_predictions(self.nsf)

        num_core = max(self.num_classes, min(self.size // 2, self.k_hm * self.num_classes))
        protos = perm[:num_core].tolist()
        proto_nsf = self._empty_finder()
        proto_nsf.calculate_restricted_neighbor_sets(self.nsf.current_k, protos, seed_finder=self.nsf)
        sample_errors = classifier.count_false_predictions(proto_nsf)

        # Points with a non-positive score are never added.
        num_unacceptable = int(np.count_nonzero(scores <= 0))
        for i in range(num_core, self.size - num_unacceptable):
            if sample_errors <= baseline_errors:
                break
            extended_nsf = proto_nsf.copy()
            extended_nsf.consider_neighbor(int(perm[i]))
            current_errors = classifier.count_false_predictions(extended_nsf)
            if not _accepts(current_errors, sample_errors, self.permit_no_change_inclusions):
                break
            proto_nsf = extended_nsf
            protos.append(int(perm[i]))
            sample_errors = current_errors

        return self._finish(protos)

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        """
        Takes the best-scoring points. A class left without a prototype
        replaces the lowest-ranked prototype of a class that has more than one.
        """
        print(f"  [IS] Running HMScore (k_hm={self.k_hm}, prototypes={num_prototypes})...")
        _, perm = self._ranked_points()
        num_selected = max(min(num_prototypes, self.size), self.num_classes)
        protos = perm[:num_selected].tolist()

        class_sizes = self.data.get_class_frequencies()
        counts = np.bincount(self.labels[protos], minlength=self.num_classes)
        for i in range(num_selected, self.size):
            if not np.any((class_sizes > 0) & (counts == 0)):
                break
            label = self.labels[perm[i]]
            if counts[label] > 0:
                continue
            for j in range(len(protos) - 1, -1, -1):
                proto_label = self.labels[protos[j]]
                if counts[proto_label] > 1:
                    protos[j] = int(perm[i])
                    counts[proto_label] -= 1
                    counts[label] += 1
                    break
        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 6: Carving
# -----------------------------------------------------------------

class Carving(InstanceSelector):
    """
    Peels the data from the class borders inwards.

    Starting from the HMScore prototypes, the points that are somebody's
    nearest miss are selected first. The rest form the active network; its
    hit-miss network is rebuilt and its newly exposed border points are
    added as long as the kNN error of the whole data does not get worse.
    """

    name = 'Carving'

    def __init__(self, nsf: NeighborSetFinder, k_hm: int = 1,
                 permit_no_change_inclusions: bool = True,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if k_hm <= 0:
            raise ConfigurationError(f"Hit-miss neighborhood size must be positive, got {k_hm}.")
        self.k_hm: int = k_hm
        self.permit_no_change_inclusions: bool = permit_no_change_inclusions
        self.hm_networks: List[HitMissNetwork] = []

    def _build_network(self, indexes: np.ndarray) -> HitMissNetwork:
        subset = self.data.subsample(indexes)
        class_sizes = subset.get_class_frequencies()
        k_hm = max(1, min(self.k_hm, int(class_sizes[class_sizes > 0].min())))
        network = HitMissNetwork(subset, self.nsf.dist_matrix.submatrix(indexes), k_hm)
        network.generate_network()
        return network

    def reduce_data_set(self) -> PrototypeIndexes:
        internal = HitMissScoreSelector(self.nsf, self.k_hm, self.permit_no_change_inclusions,
                                        random_state=self.random_state)
        super_protos = np.asarray(internal.reduce_data_set(), dtype=int)
        print(f"  [IS] Running Carving (k_hm={self.k_hm}) on {len(super_protos)} candidates...")
        if self.data.subsample(super_protos).count_present_classes() < 2:
            return self._finish(super_protos)

        super_network = self._build_network(super_protos)
        self.hm_networks = [super_network]
        border = super_network.miss_occ_freqs > 0
        added = super_protos[border]
        network_indexes = super_protos[~border]
        # Position in the current network -> position in the previous one.
        backward_map = np.flatnonzero(~border)
        if len(added) == 0:
            return self._finish(super_protos)

        classifier = KNNClassifier(self.data)
        proto_nsf = self._empty_finder()
        proto_nsf.calculate_restricted_neighbor_sets(self.nsf.current_k, added, seed_finder=self.nsf)
        num_errors = classifier.count_false_predictions(proto_nsf)
        protos = added.tolist()

        while True:
            if self.data.subsample(network_indexes).count_present_classes() < 2:
                break
            current = self._build_network(network_indexes)
            previous = self.hm_networks[-1]
            previous_totals = previous.hit_occ_freqs + previous.miss_occ_freqs
            candidates = (current.miss_occ_freqs > 0) & (previous_totals[backward_map] > 0)
            self.hm_networks.append(current)
            if not candidates.any():
                break

            for index in network_indexes[candidates]:
                proto_nsf.consider_neighbor(int(index))
            new_errors = classifier.count_false_predictions(proto_nsf)
            if not _accepts(new_errors, num_errors, self.permit_no_change_inclusions):
                break
            num_errors = new_errors
            protos.extend(network_indexes[candidates].tolist())
            backward_map = np.flatnonzero(~candidates)
            network_indexes = network_indexes[~candidates]
            if len(network_indexes) < self.k_hm:
                break

        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 7: Iterative Case Filtering (ICF)
# -----------------------------------------------------------------

class ICF(InstanceSelector):
    """
    Iterative Case Filtering over the Wilson72-edited data.

    coverage(p):     how many points have p within their nearest-enemy radius
    reachability(p): how many points lie within p's own nearest-enemy radius
    Points with coverage >= reachability are retained, and the filter runs
    again on them until the set stops shrinking, gets too small, or loses
    a class.
    """

    name = 'ICF'

    def __init__(self, nsf: NeighborSetFinder, random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        self.hm_networks: List[HitMissNetwork] = []
        self.min_num_prototypes: int = 0

    def reduce_data_set(self) -> PrototypeIndexes:
        super_protos = Wilson72(self.nsf, random_state=self.random_state).reduce_data_set()
        print(f"  [IS] Running ICF on {len(super_protos)} edited points...")
        super_set = self.data.subsample(super_protos)
        if super_set.count_present_classes() < 2:
            return self._finish(super_protos)

        super_matrix = self.nsf.dist_matrix.submatrix(super_protos)
        super_network = HitMissNetwork(super_set, super_matrix, 1)
        super_network.generate_network()
        self.hm_networks = [super_network]
        self.min_num_prototypes = min(len(super_protos) // 3,
                                      self.num_classes * self.nsf.current_k)
        protos = self._filter_cases(tuple(super_protos), super_matrix, super_network)
        return self._finish(protos)

    def _filter_cases(self, index_map: IndexMap, dist_matrix: DistanceMatrix,
                      network: HitMissNetwork) -> PrototypeIndexes:
        """One filtering pass over the points in `index_map`; recurses on the retained ones."""
        current_size = len(index_map)
        square = dist_matrix.to_square()
        nearest_enemy = np.array([square[i, network.misses[i][0]] for i in range(current_size)])

        # within[i, j]: j lies inside the nearest-enemy radius of i
        within = square < nearest_enemy[:, None]
        np.fill_diagonal(within, False)
        reachability = within.sum(axis=1)
        coverage = within.sum(axis=0)

        retained = np.flatnonzero(coverage >= reachability)
        retained_map: IndexMap = tuple(index_map[i] for i in retained)
        reduced_set = self.data.subsample(retained_map)
        if (len(retained) < self.min_num_prototypes or len(retained) == current_size
                or reduced_set.count_present_classes() < 2):
            return list(retained_map)

        reduced_matrix = dist_matrix.submatrix(retained)
        reduced_network = HitMissNetwork(reduced_set, reduced_matrix, 1)
        reduced_network.generate_network()
        self.hm_networks.append(reduced_network)
        return self._filter_cases(retained_map, reduced_matrix, reduced_network)


# -----------------------------------------------------------------
#  Algorithm 8: INSIGHT (hubness-score ranking)
# -----------------------------------------------------------------

class INSIGHT(InstanceSelector):
    """
    Ranks the points by a score built from their good and bad k-occurrences
    and keeps the best ones.

    Scoring modes:
        good_hubness                 good
        good_hubness_relative        good / (occ + 1)
        good_minus_bad_hubness_prop  (good - bad) / (occ + 1)
        xi                           good - 2 * bad

    Without a size target, points are taken down the ranking until they
    account for a fraction `tau` of all k * N occurrences. A class left
    without a prototype gets its best-ranked member.
    """

    name = 'INSIGHT'
    GOOD_HUBNESS = 'good_hubness'
    GOOD_HUBNESS_RELATIVE = 'good_hubness_relative'
    GOOD_MINUS_BAD_HUBNESS_PROP = 'good_minus_bad_hubness_prop'
    XI = 'xi'
    SCORING_MODES = (GOOD_HUBNESS, GOOD_HUBNESS_RELATIVE, GOOD_MINUS_BAD_HUBNESS_PROP, XI)

    def __init__(self, nsf: NeighborSetFinder, k: Optional[int] = None,
                 mode: str = GOOD_HUBNESS, tau: float = 0.7,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if k is not None and k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        if mode not in self.SCORING_MODES:
            raise ConfigurationError(
                f"Unknown INSIGHT scoring mode '{mode}'. Expected one of {list(self.SCORING_MODES)}.")
        if not 0 < tau <= 1:
            raise ConfigurationError(f"tau must be in (0, 1], got {tau}.")
        self.k_selection: Optional[int] = k
        self.mode: str = mode
        self.tau: float = tau
        self.instance_scores: Optional[np.ndarray] = None

    def _selection_k(self) -> int:
        if self.k_selection is not None:
            return self.k_selection
        return self.nsf.current_k if self.nsf.has_neighbor_sets() else DEFAULT_SELECTION_K

    def _ranked_points(self, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Labeled points from the best score down, and the occurrence counts at k."""
        finder = self._finder_at(k)
        good = finder.get_good_frequencies().astype(float)
        bad = finder.get_bad_frequencies().astype(float)
        occ = finder.get_neighbor_frequencies()

        if self.mode == self.GOOD_HUBNESS:
            scores = good
        elif self.mode == self.GOOD_HUBNESS_RELATIVE:
            scores = good / (occ + 1)
        elif self.mode == self.GOOD_MINUS_BAD_HUBNESS_PROP:
            scores = (good - bad) / (occ + 1)
        else:
            scores = good - 2 * bad
        self.instance_scores = scores

        labeled = np.flatnonzero(self.labels >= 0)
        return labeled[np.argsort(-scores[labeled], kind='stable')], occ

    def _complete_by_rank(self, protos: List[int], ranked: np.ndarray) -> List[int]:
        covered = np.zeros(max(self.num_classes, 1), dtype=bool)
        covered[self.labels[protos]] = True
        for index in ranked:
            label = self.labels[index]
            if not covered[label]:
                protos.append(int(index))
                covered[label] = True
        return protos

    def reduce_data_set(self) -> PrototypeIndexes:
        k = self._selection_k()
        print(f"  [IS] Running INSIGHT (k={k}, mode={self.mode}, tau={self.tau})...")
        ranked, occ = self._ranked_points(k)
        threshold = int(self.tau * k * self.size)

        protos: List[int] = []
        covered_occurrences = 0
        for index in ranked:
            protos.append(int(index))
            covered_occurrences += int(occ[index])
            if covered_occurrences >= threshold:
                break
        return self._finish(self._complete_by_rank(protos, ranked))

    def _reduce_to_count(self, num_prototypes: int) -> PrototypeIndexes:
        k = self._selection_k()
        print(f"  [IS] Running INSIGHT (k={k}, mode={self.mode}, prototypes={num_prototypes})...")
        ranked, _ = self._ranked_points(k)
        protos = ranked[:num_prototypes].tolist()
        return self._finish(self._complete_by_rank(protos, ranked))


# -----------------------------------------------------------------
#  Algorithm 9: Reverse Nearest Neighbor Reduction (RNNR-AL1)
# -----------------------------------------------------------------

class RNNR(InstanceSelector):
    """
    Reverse nearest neighbor reduction with the 1-NN sets.

    Within each class, points are visited from the most to the least
    frequent 1-NN occurrence. A visited point is kept unless one of the
    kept points already has it as a reverse neighbor, or it is an
    anti-hub (never a 1-NN); the best two points of a class are spared
    the anti-hub rule and the best one is always kept. Keeping a point
    covers all of its reverse neighbors. No size control.
    """

    name = 'RNNR'

    def reduce_data_set(self) -> PrototypeIndexes:
        print("  [IS] Running RNNR (k=1)...")
        finder = self._finder_at(1)
        occ = finder.get_neighbor_frequencies()
        reverse = finder.get_reverse_neighbors()
        ranked = np.argsort(-occ, kind='stable')

        covered = np.zeros(self.size, dtype=bool)
        protos: List[int] = []
        for c in range(self.num_classes):
            members = ranked[self.labels[ranked] == c]
            for position, index in enumerate(members):
                if covered[index] and position > 0:
                    continue
                if occ[index] < 1 and position > 1:
                    covered[index] = True
                    continue
                protos.append(int(index))
                covered[reverse[index]] = True
        return self._finish(protos)


# -----------------------------------------------------------------
#  Algorithm 10: Iterative prototype thinning (IPT-RT3)
# -----------------------------------------------------------------

class IPT_RT3(InstanceSelector):
    """
    RT3-style thinning of the Wilson72-edited data.

    The edited points are visited from the farthest to the closest nearest
    enemy among their k + 1 nearest edited neighbors. A point is dropped
    when the points that have it among their k + 1 neighbors (its
    associates) are classified by their k nearest remaining prototypes at
    least as well without it as with it. If fewer than
    `min_num_prototypes` points survive (default max(2k, 40), capped by
    the edited set), the ones whose removal hurt their associates most are
    taken instead. No size control.
    """

    name = 'IPT_RT3'

    def __init__(self, nsf: NeighborSetFinder, k: Optional[int] = None,
                 min_num_prototypes: Optional[int] = None,
                 random_state: Optional[int] = None):
        super().__init__(nsf, random_state)
        if k is not None and k <= 0:
            raise ConfigurationError(f"Neighborhood size must be positive, got k={k}.")
        if min_num_prototypes is not None and min_num_prototypes <= 0:
            raise ConfigurationError(
                f"Minimal number of prototypes must be positive, got {min_num_prototypes}.")
        self.k_selection: Optional[int] = k
        self.min_num_prototypes: Optional[int] = min_num_prototypes

    def _correct_count(self, classifier: KNNClassifier, finder: NeighborSetFinder,
                       associates: np.ndarray) -> int:
        neighbor_sets = finder.k_neighbors
        return sum(classifier.classify(int(a), neighbor_sets[a]) == self.labels[a]
                   for a in associates)

    def reduce_data_set(self) -> PrototypeIndexes:
        k = self.k_selection
        if k is None:
            k = self.nsf.current_k if self.nsf.has_neighbor_sets() else DEFAULT_SELECTION_K
        edited = np.asarray(Wilson72(self.nsf, k=k, random_state=self.random_state).reduce_data_set(),
                            dtype=int)
        print(f"  [IS] Running IPT_RT3 (k={k}) on {len(edited)} edited points...")

        finder = self._empty_finder()
        seed_finder = self.nsf if self.nsf.has_neighbor_sets() else None
        finder.calculate_restricted_neighbor_sets(k + 1, edited, seed_finder=seed_finder)

        nearest_enemy = np.full(self.size, np.inf)
        for i in range(self.size):
            for j, dist in zip(finder.k_neighbors[i], finder.k_distances[i]):
                if j >= 0 and self.labels[j] >= 0 and self.labels[j] != self.labels[i]:
                    nearest_enemy[i] = dist
                    break
        order = edited[np.argsort(-nearest_enemy[edited], kind='stable')]

        classifier = KNNClassifier(self.data, k=k)
        labeled = self.labels >= 0
        kept: List[int] = []
        positivity: List[int] = []
        for index in order:
            holders = (finder.k_neighbors == index).any(axis=1)
            associates = np.flatnonzero(holders & labeled)
            with_index = self._correct_count(classifier, finder, associates)
            finder.consider_neighbor(int(index), remove=True)
            without_index = self._correct_count(classifier, finder, associates)
            positivity.append(with_index - without_index)
            if without_index < with_index:
                finder.consider_neighbor(int(index))
                kept.append(int(index))

        min_num_prototypes = self.min_num_prototypes
        if min_num_prototypes is None:
            min_num_prototypes = max(2 * k, 40)
        min_num_prototypes = min(min_num_prototypes, len(edited))
        if len(kept) < min_num_prototypes:
            best = np.argsort(-np.asarray(positivity), kind='stable')[:min_num_prototypes]
            kept = order[best].tolist()
        return self._finish(kept)


SELECTORS: Dict[str, Type[InstanceSelector]] = {
    'Random': RandomSelector,
    'Wilson72': Wilson72,
    'CNN': CNN,
    'GCNN': GCNN,
    'ENRBF': ENRBF,
    'HMScore': HitMissScoreSelector,
    'Carving': Carving,
    'ICF': ICF,
    'INSIGHT': INSIGHT,
    'RNNR': RNNR,
    'IPT_RT3': IPT_RT3,
}
