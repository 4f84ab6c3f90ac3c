import numpy as np
import pytest

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.quality_indices import (
    QUALITY_INDICES, CalinskiHarabaszIndex, CIndex, DunnIndex, FolkesMallowsIndex,
    GoodmanKruskalIndex, IsolationIndex, JaccardIndex, McClainRaoIndex, RandIndex,
    RSIndex, SDIndex, SilhouetteIndex, TauIndex,
)

TRUE_CLUSTERS = np.array([0, 0, 0, 1, 1, 1])
INDEX_OPTIONS = {'SD': {'alpha': 1.0}, 'Isolation': {'k': 2}}


def build(index_class, associations, data, dist_matrix=None, **kwargs):
    return index_class(associations, data, dist_matrix, **kwargs)


def test_dunn_on_separated_groups(line_data):
    # Centroids 1 and 11, largest centroid-to-member distance 1
    assert build(DunnIndex, TRUE_CLUSTERS, line_data).validity() == pytest.approx(10.0)


def test_calinski_harabasz(line_data):
    assert build(CalinskiHarabaszIndex, TRUE_CLUSTERS, line_data).validity() == pytest.approx(150.0)


def test_rs_index(line_data):
    assert build(RSIndex, TRUE_CLUSTERS, line_data).validity() == pytest.approx(150 / 154)


def test_silhouette(line_data, line_matrix):
    expected = (9.5 / 11 + 0.9 + 7.5 / 9) / 3
    value = build(SilhouetteIndex, TRUE_CLUSTERS, line_data, line_matrix).validity()
    assert value == pytest.approx(expected)


def test_pairwise_ordering_indices(line_data, line_matrix):
    # Every intra-cluster distance is below every inter-cluster distance
    assert build(GoodmanKruskalIndex, TRUE_CLUSTERS, line_data, line_matrix).validity() == pytest.approx(1.0)
    assert build(CIndex, TRUE_CLUSTERS, line_data, line_matrix).validity() == pytest.approx(1.0)
    tau = build(TauIndex, TRUE_CLUSTERS, line_data, line_matrix).validity()
    assert tau == pytest.approx(54 / np.sqrt(105 * 54))


def test_mcclain_rao(line_data, line_matrix):
    assert build(McClainRaoIndex, TRUE_CLUSTERS, line_data, line_matrix).validity() == pytest.approx(7.5)


def test_tied_distances_count_as_discordant():
    # Intra pair (0, 1) = 1 against inter pairs 2 (concordant) and 1 (tie)
    data = DataSet(np.array([[0.0], [1.0], [2.0]]), np.array([0, 0, 1]))
    dmat = DistanceMatrix.compute(data.X)
    assignments = np.array([0, 0, 1])
    assert build(GoodmanKruskalIndex, assignments, data, dmat).validity() == 0.0
    assert build(TauIndex, assignments, data, dmat).validity() == 0.0


def test_single_cluster_gives_zero(line_data, line_matrix):
    one_cluster = np.zeros(6, dtype=int)
    assert build(DunnIndex, one_cluster, line_data).validity() == 0.0
    assert build(TauIndex, one_cluster, line_data, line_matrix).validity() == 0.0
    assert build(SilhouetteIndex, one_cluster, line_data, line_matrix).validity() == 0.0
    assert build(CalinskiHarabaszIndex, one_cluster, line_data).validity() == 0.0
    assert build(IsolationIndex, one_cluster, line_data, k=2).validity() == 0.0


def test_singleton_clusters_have_no_silhouette(line_data, line_matrix):
    assert build(SilhouetteIndex, np.arange(6), line_data, line_matrix).validity() == 0.0


def test_calinski_harabasz_without_inner_scatter():
    points = DataSet(np.array([0.0, 0.0, 5.0, 5.0]).reshape(-1, 1))
    assert build(CalinskiHarabaszIndex, [0, 0, 1, 1], points).validity() == float('inf')


def test_pair_counting_against_labels(line_data):
    assert build(RandIndex, TRUE_CLUSTERS, line_data).validity() == pytest.approx(1.0)
    assert build(FolkesMallowsIndex, TRUE_CLUSTERS, line_data).validity() == pytest.approx(1.0)

    split = np.array([0, 0, 1, 1, 2, 2])
    assert build(RandIndex, split, line_data).validity() == pytest.approx(10 / 15)
    assert build(JaccardIndex, split, line_data).validity() == pytest.approx(2 / 7)


def test_pair_counting_needs_labels(line_data):
    unlabeled = DataSet(line_data.X)
    with pytest.raises(DataAvailabilityError):
        RandIndex(TRUE_CLUSTERS, unlabeled)


def test_sd_needs_alpha(line_data):
    with pytest.raises(ConfigurationError):
        SDIndex(TRUE_CLUSTERS, line_data).validity()
    assert SDIndex(TRUE_CLUSTERS, line_data, alpha=1.0).validity() > 0


def test_isolation_rate(line_data, line_nsf):
    assert build(IsolationIndex, TRUE_CLUSTERS, line_data, k=2).validity() == pytest.approx(1.0)
    split = np.array([0, 0, 1, 1, 2, 2])
    # Points 2 and 3 have no neighbor in their own cluster, the others one of two
    assert build(IsolationIndex, split, line_data, nsf=line_nsf).validity() == pytest.approx(1 / 3)


def test_isolation_skips_unassigned_neighbors(line_data, line_nsf):
    # Point 5 is unassigned, so 3 and 4 only see each other
    associations = np.array([0, 0, 0, 1, 1, -1])
    assert build(IsolationIndex, associations, line_data, nsf=line_nsf).validity() == pytest.approx(1.0)


def test_noise_and_unassigned_points_are_ignored(line_data):
    X = np.vstack([line_data.X, [[100.0]]])
    noisy = DataSet(X, np.append(line_data.y, -1))
    assert build(DunnIndex, np.append(TRUE_CLUSTERS, 0), noisy).validity() == pytest.approx(10.0)
    unlabeled = DataSet(X)
    assert build(DunnIndex, np.append(TRUE_CLUSTERS, -1), unlabeled).validity() == pytest.approx(10.0)


def test_mismatched_lengths_are_rejected(line_data, random_points):
    with pytest.raises(ConfigurationError):
        DunnIndex(np.zeros(4, dtype=int), line_data)
    with pytest.raises(ConfigurationError):
        CIndex(TRUE_CLUSTERS, line_data, DistanceMatrix.compute(random_points))


@pytest.mark.parametrize("name", sorted(QUALITY_INDICES))
def test_every_index_prefers_the_true_clustering(name, blobs_data):
    rng = np.random.default_rng(0)
    dmat = DistanceMatrix.compute(blobs_data.X)
    options = INDEX_OPTIONS.get(name, {})
    true_value = QUALITY_INDICES[name](blobs_data.y, blobs_data, dmat, **options).validity()
    shuffled = rng.permutation(blobs_data.y)
    shuffled_value = QUALITY_INDICES[name](shuffled, blobs_data, dmat, **options).validity()
    assert np.isfinite(true_value)
    assert true_value > shuffled_value
