import numpy as np
import pytest

from hubness_modules.dataset import DataSet
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.instance_selectors import (
    GCNN, INSIGHT, IPT_RT3, RNNR, SELECTORS, HitMissScoreSelector, RandomSelector,
    Wilson72, repair_class_completeness,
)
from hubness_modules.knn_classifier import KNNClassifier
from hubness_modules.neighbor_sets import NeighborSetFinder


def assert_valid_prototypes(protos, data):
    assert protos == sorted(set(protos))
    assert 0 < len(protos) <= data.size()
    assert all(0 <= p < data.size() for p in protos)
    assert set(data.y[protos]) == set(data.y)


@pytest.mark.parametrize("name", sorted(SELECTORS))
def test_every_selector_covers_all_classes(name, three_class_data, three_class_nsf):
    selector = SELECTORS[name](three_class_nsf, random_state=0)
    protos = selector.reduce_data_set()
    assert_valid_prototypes(protos, three_class_data)
    assert selector.prototype_indexes == protos
    assert selector.get_reduced_data_set().size() == len(protos)


@pytest.mark.parametrize("name", sorted(SELECTORS))
def test_every_selector_supports_prototype_hubness(name, three_class_data, three_class_nsf):
    selector = SELECTORS[name](three_class_nsf, random_state=1)
    protos = selector.reduce_data_set()
    selector.calculate_prototype_hubness(3)
    assert len(selector.proto_hubness) == len(protos)
    np.testing.assert_array_equal(selector.proto_good_hubness + selector.proto_bad_hubness,
                                  selector.proto_hubness)


def test_repair_adds_the_first_member_of_missing_classes():
    labels = np.array([0, 0, 1, 1, 2, -1])
    assert repair_class_completeness([4, 4], labels) == [0, 2, 4]
    assert repair_class_completeness([5, 1, 3], labels) == [1, 3, 4, 5]


def test_wilson_keeps_clean_groups(line_nsf):
    assert Wilson72(line_nsf, k=2).reduce_data_set() == [0, 1, 2, 3, 4, 5]


def test_wilson_drops_a_mislabeled_point():
    X = np.array([0.0, 1.0, 2.0, 3.0, 10.0, 11.0, 12.0, 13.0]).reshape(-1, 1)
    data = DataSet(X, np.array([0, 0, 0, 0, 1, 1, 1, 0]))
    nsf = NeighborSetFinder(data)
    nsf.calculate_neighbor_sets(3)
    assert Wilson72(nsf).reduce_data_set() == [0, 1, 2, 3, 4, 5, 6]


def test_wilson_does_not_change_the_finder_k(three_class_nsf):
    Wilson72(three_class_nsf, k=5).reduce_data_set()
    assert three_class_nsf.current_k == 3


def test_random_selection_is_stratified(three_class_data, three_class_nsf):
    protos = RandomSelector(three_class_nsf, random_state=4).reduce_data_set_to(0.5)
    counts = np.bincount(three_class_data.y[protos])
    np.testing.assert_array_equal(counts, [7, 7, 7])


def test_random_selection_is_reproducible(three_class_nsf):
    first = RandomSelector(three_class_nsf, random_state=9).reduce_data_set()
    second = RandomSelector(three_class_nsf, random_state=9).reduce_data_set()
    assert first == second


@pytest.mark.parametrize("target", [1.5, 0])
def test_bad_reduction_targets(three_class_nsf, target):
    with pytest.raises(ConfigurationError):
        RandomSelector(three_class_nsf).reduce_data_set_to(target)


def test_gcnn_on_separated_blobs(blobs_data):
    nsf = NeighborSetFinder(blobs_data)
    nsf.calculate_neighbor_sets(3)
    selector = GCNN(nsf, random_state=0)
    protos = selector.reduce_data_set()
    assert_valid_prototypes(protos, blobs_data)
    assert len(protos) < blobs_data.size()


def test_gcnn_with_a_count(three_class_data, three_class_nsf):
    protos = GCNN(three_class_nsf, random_state=2).reduce_data_set_to(2)
    assert_valid_prototypes(protos, three_class_data)
    assert len(protos) <= 4


def test_hm_score_selection_with_a_count(three_class_data, three_class_nsf):
    protos = HitMissScoreSelector(three_class_nsf).reduce_data_set_to(6)
    assert len(protos) == 6
    assert_valid_prototypes(protos, three_class_data)


def test_hm_score_selection_rejects_noise(three_class_data):
    y = three_class_data.y.copy()
    y[0] = -1
    nsf = NeighborSetFinder(DataSet(three_class_data.X, y))
    nsf.calculate_neighbor_sets(3)
    with pytest.raises(DataAvailabilityError):
        HitMissScoreSelector(nsf).reduce_data_set()


def test_noise_is_never_selected(three_class_data):
    y = three_class_data.y.copy()
    y[[0, 20]] = -1
    nsf = NeighborSetFinder(DataSet(three_class_data.X, y))
    nsf.calculate_neighbor_sets(3)
    for name in ['Random', 'Wilson72', 'GCNN', 'ENRBF', 'INSIGHT', 'RNNR', 'IPT_RT3']:
        protos = SELECTORS[name](nsf, random_state=0).reduce_data_set()
        assert 0 not in protos and 20 not in protos


def test_selectors_need_labels(random_points):
    nsf = NeighborSetFinder(random_points)
    with pytest.raises(DataAvailabilityError):
        Wilson72(nsf)


def test_prototype_hubness_on_the_line(line_nsf):
    selector = Wilson72(line_nsf)
    selector.prototype_indexes = [1, 4]
    selector.calculate_prototype_hubness(1)

    np.testing.assert_array_equal(selector.proto_hubness, [3, 3])
    np.testing.assert_array_equal(selector.proto_good_hubness, [2, 2])
    np.testing.assert_array_equal(selector.proto_bad_hubness, [1, 1])
    # A prototype never counts as its own neighbor
    np.testing.assert_array_equal(selector.proto_neighbor_sets[:, 0], [0, 1, 0, 1, 0, 1])
    np.testing.assert_array_equal(selector.proto_class_hubness, [[2, 1], [1, 2]])


def test_prototype_class_relations(line_nsf):
    selector = Wilson72(line_nsf)
    selector.prototype_indexes = [1, 4]
    selector.calculate_prototype_hubness(1)

    fuzzy = selector.get_class_data_neighbor_relation_fuzzy()
    np.testing.assert_allclose(fuzzy.sum(axis=0), [1.0, 1.0])
    assert selector.get_class_data_neighbor_relation_bayesian().shape == (2, 2)

    priors = selector.calculate_class_to_class_priors()
    assert priors[0, 0] == pytest.approx(2.001 / 3.002)
    assert priors[0, 1] == pytest.approx(1.001 / 3.002)
    np.testing.assert_array_equal(selector.get_knn_hubness_weighting_scheme(), [1.0, 1.0])


def test_prototype_hubness_needs_prototypes(line_nsf):
    selector = Wilson72(line_nsf)
    with pytest.raises(DataAvailabilityError):
        selector.calculate_prototype_hubness(2)
    with pytest.raises(DataAvailabilityError):
        selector.get_class_data_neighbor_relation_fuzzy()


@pytest.fixture
def mislabeled_line_nsf():
    # Two groups of four on a line; the last point of the right group carries the left label
    X = np.array([0.0, 1.0, 2.0, 3.0, 10.0, 11.0, 12.0, 13.0]).reshape(-1, 1)
    nsf = NeighborSetFinder(DataSet(X, np.array([0, 0, 0, 0, 1, 1, 1, 0])))
    nsf.calculate_neighbor_sets(3)
    return nsf


def test_insight_covers_the_occurrence_share(mislabeled_line_nsf):
    selector = INSIGHT(mislabeled_line_nsf)
    # Every point occurs 3 times; 6 points are needed for 70% of the 24 occurrences
    assert selector.reduce_data_set() == [0, 1, 2, 3, 4, 5]
    np.testing.assert_array_equal(selector.instance_scores, [3, 3, 3, 3, 2, 2, 2, 0])


@pytest.mark.parametrize("mode", INSIGHT.SCORING_MODES)
def test_insight_ranks_the_mislabeled_point_last(mislabeled_line_nsf, mode):
    selector = INSIGHT(mislabeled_line_nsf, mode=mode)
    # The best-ranked member of the uncovered class is added
    assert selector.reduce_data_set_to(2) == [0, 1, 4]
    assert np.argmin(selector.instance_scores) == 7


def test_insight_scoring_modes(mislabeled_line_nsf):
    relative = INSIGHT(mislabeled_line_nsf, mode=INSIGHT.GOOD_MINUS_BAD_HUBNESS_PROP)
    relative.reduce_data_set()
    np.testing.assert_allclose(relative.instance_scores, [0.75] * 4 + [0.25] * 3 + [-0.75])

    xi = INSIGHT(mislabeled_line_nsf, mode=INSIGHT.XI)
    xi.reduce_data_set()
    np.testing.assert_array_equal(xi.instance_scores, [3, 3, 3, 3, 0, 0, 0, -6])


def test_insight_rejects_unknown_settings(line_nsf):
    with pytest.raises(ConfigurationError):
        INSIGHT(line_nsf, mode='bad_hubness')
    with pytest.raises(ConfigurationError):
        INSIGHT(line_nsf, tau=0)


def test_rnnr_keeps_one_hub_per_group(line_nsf):
    # 1-NN occurrences are [1, 2, 0, 1, 2, 0]; the hubs 1 and 4 cover their groups
    assert RNNR(line_nsf).reduce_data_set() == [1, 4]
    assert line_nsf.current_k == 2


def test_ipt_rt3_keeps_the_minimal_set(blobs_data):
    nsf = NeighborSetFinder(blobs_data)
    nsf.calculate_neighbor_sets(3)
    # The edited set has 40 points, which is the default minimal size
    assert IPT_RT3(nsf).reduce_data_set() == list(range(40))


def test_ipt_rt3_thinning_keeps_every_point_correct(blobs_data):
    nsf = NeighborSetFinder(blobs_data)
    nsf.calculate_neighbor_sets(3)
    protos = IPT_RT3(nsf, min_num_prototypes=1).reduce_data_set()
    assert_valid_prototypes(protos, blobs_data)
    assert len(protos) < blobs_data.size()

    proto_nsf = NeighborSetFinder(blobs_data, nsf.dist_matrix)
    proto_nsf.calculate_restricted_neighbor_sets(3, protos)
    assert KNNClassifier(blobs_data, k=3).count_false_predictions(proto_nsf) == 0
