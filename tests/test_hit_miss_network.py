import numpy as np
import pytest

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.hit_miss_network import HitMissNetwork, compute_hm_score
from hubness_modules.neighbor_sets import NeighborSetFinder


def test_hm_score_values():
    assert compute_hm_score(0, 0) == -1.0
    assert compute_hm_score(3, 1) == pytest.approx(0.75 * np.log2(0.75) - 0.25 * np.log2(0.25))
    assert compute_hm_score(4, 0) == pytest.approx(0.0)


def test_line_network(line_data, line_matrix):
    network = HitMissNetwork(line_data, line_matrix, 1)
    network.generate_network()
    assert [int(h[0]) for h in network.hits] == [1, 0, 1, 4, 3, 4]
    assert [int(m[0]) for m in network.misses] == [3, 3, 3, 2, 2, 2]
    np.testing.assert_array_equal(network.hit_occ_freqs, [1, 2, 0, 1, 2, 0])
    np.testing.assert_array_equal(network.miss_occ_freqs, [0, 0, 3, 3, 0, 0])
    assert network.miss_reverse_sets[2] == [3, 4, 5]


def test_network_from_finder_matches_direct_build(three_class_data, three_class_nsf):
    direct = HitMissNetwork(three_class_data, three_class_nsf.dist_matrix, 2)
    direct.generate_network()
    reused = HitMissNetwork(three_class_data, three_class_nsf.dist_matrix, 2)
    reused.generate_from_finder(three_class_nsf)

    for a, b in zip(direct.hits, reused.hits):
        np.testing.assert_array_equal(a, b)
    for a, b in zip(direct.misses, reused.misses):
        np.testing.assert_array_equal(a, b)
    np.testing.assert_array_equal(direct.hit_occ_freqs, reused.hit_occ_freqs)
    np.testing.assert_array_equal(direct.miss_occ_freqs, reused.miss_occ_freqs)


def test_occurrences_sum_to_n_times_k_hm(three_class_data, three_class_nsf):
    network = HitMissNetwork(three_class_data, three_class_nsf.dist_matrix, 2)
    network.generate_from_finder(three_class_nsf)
    assert network.hit_occ_freqs.sum() == 2 * three_class_data.size()
    assert network.miss_occ_freqs.sum() == 2 * three_class_data.size()


def test_all_hm_scores(line_data, line_matrix):
    network = HitMissNetwork(line_data, line_matrix, 1)
    network.generate_network()
    scores = network.compute_all_hm_scores()
    assert len(scores) == 6
    assert scores[1] == pytest.approx(0.0)


def test_scores_need_a_network(line_data, line_matrix):
    with pytest.raises(DataAvailabilityError):
        HitMissNetwork(line_data, line_matrix, 1).compute_all_hm_scores()


@pytest.mark.parametrize("k_hm", [0, 4])
def test_bad_neighborhood_size(line_data, line_matrix, k_hm):
    with pytest.raises(ConfigurationError):
        HitMissNetwork(line_data, line_matrix, k_hm).generate_network()


def test_unlabeled_data_is_rejected(line_data, line_matrix):
    unlabeled = DataSet(line_data.X)
    with pytest.raises(DataAvailabilityError):
        HitMissNetwork(unlabeled, line_matrix, 1).generate_network()


def test_single_class_is_rejected(line_data, line_matrix):
    single = DataSet(line_data.X, np.zeros(6, dtype=int))
    with pytest.raises(DataAvailabilityError):
        HitMissNetwork(single, line_matrix, 1).generate_network()


def test_noise_labels_are_rejected(line_data, line_matrix):
    noisy = DataSet(line_data.X, np.array([0, 0, -1, 1, 1, 1]))
    with pytest.raises(DataAvailabilityError):
        HitMissNetwork(noisy, line_matrix, 1).generate_network()


def test_k_hm_above_minimum_class_size(line_matrix):
    X = np.arange(6, dtype=float).reshape(-1, 1)
    data = DataSet(X, np.array([0, 0, 0, 0, 0, 1]))
    with pytest.raises(ConfigurationError):
        HitMissNetwork(data, DistanceMatrix.compute(X), 2).generate_network()


def test_restricted_finder_falls_back_to_a_direct_build(line_data, line_matrix):
    nsf = NeighborSetFinder(line_data, line_matrix)
    nsf.calculate_restricted_neighbor_sets(2, [0, 3])
    network = HitMissNetwork(line_data, line_matrix, 1)
    network.generate_from_finder(nsf)
    assert [int(h[0]) for h in network.hits] == [1, 0, 1, 4, 3, 4]
