import numpy as np
import pytest

from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.neighbor_sets import (
    BoundedNeighborBuffer, NeighborSetFinder, nearest_indexes,
)


def brute_force_restricted(square, considered, k):
    """Sorts the considered points by (distance, index) for every query."""
    rows = []
    for i in range(len(square)):
        keys = sorted((square[i, j], j) for j in considered if j != i)[:k]
        row = [j for _, j in keys]
        rows.append(row + [-1] * (k - len(row)))
    return np.array(rows)


def test_line_neighbor_sets(line_nsf):
    np.testing.assert_array_equal(line_nsf.k_neighbors[0], [1, 2])
    np.testing.assert_array_equal(line_nsf.k_neighbors[3], [4, 5])
    # Equal distances resolve to the lower index
    np.testing.assert_array_equal(line_nsf.k_neighbors[1], [0, 2])
    assert line_nsf.get_neighbor_frequencies()[1] == 2


def test_occurrences_sum_to_n_times_k(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(5)
    assert nsf.get_neighbor_frequencies().sum() == len(random_points) * 5


def test_neighbors_are_sorted_and_exclude_self(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(6)
    for i, row in enumerate(nsf.k_neighbors):
        assert i not in row
        assert np.all(np.diff(nsf.k_distances[i]) >= 0)


def test_smaller_k_is_a_prefix(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(8)
    full = nsf.k_neighbors.copy()
    nsf.recalculate_stats_for_smaller_k(3)
    np.testing.assert_array_equal(nsf.k_neighbors, full[:, :3])
    assert nsf.get_neighbor_frequencies().sum() == len(random_points) * 3

    fresh = NeighborSetFinder(random_points)
    fresh.calculate_neighbor_sets(3)
    np.testing.assert_array_equal(fresh.k_neighbors, nsf.k_neighbors)


def test_larger_k_triggers_recomputation(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(2)
    nsf.recalculate_stats_for_smaller_k(5)
    assert nsf.current_k == 5
    assert nsf.k_neighbors.shape == (len(random_points), 5)


def test_threaded_neighbor_sets_match(random_points):
    single = NeighborSetFinder(random_points, num_threads=1)
    single.calculate_neighbor_sets(4)
    threaded = NeighborSetFinder(random_points, num_threads=3)
    threaded.calculate_neighbor_sets(4)
    np.testing.assert_array_equal(single.k_neighbors, threaded.k_neighbors)


@pytest.mark.parametrize("k", [0, 6])
def test_invalid_k_is_rejected(line_data, k):
    nsf = NeighborSetFinder(line_data)
    with pytest.raises(ConfigurationError):
        nsf.calculate_neighbor_sets(k)


def test_missing_inputs_are_rejected(line_data):
    with pytest.raises(DataAvailabilityError):
        NeighborSetFinder()
    with pytest.raises(ConfigurationError):
        NeighborSetFinder(line_data, DistanceMatrix.compute(np.zeros((3, 1))))
    with pytest.raises(DataAvailabilityError):
        NeighborSetFinder(line_data).get_neighbor_frequencies()


def test_restricted_sets_match_brute_force(random_points):
    considered = [0, 3, 4, 9, 12, 17, 21, 28]
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_restricted_neighbor_sets(4, considered)
    square = nsf.dist_matrix.to_square()
    np.testing.assert_array_equal(nsf.k_neighbors, brute_force_restricted(square, considered, 4))


def test_seeded_restricted_sets_match_unseeded(random_points):
    considered = np.zeros(len(random_points), dtype=bool)
    considered[::3] = True
    parent = NeighborSetFinder(random_points)
    parent.calculate_neighbor_sets(6)

    seeded = NeighborSetFinder(random_points, parent.dist_matrix)
    seeded.calculate_restricted_neighbor_sets(4, considered, seed_finder=parent)
    unseeded = NeighborSetFinder(random_points, parent.dist_matrix)
    unseeded.calculate_restricted_neighbor_sets(4, considered)
    np.testing.assert_array_equal(seeded.k_neighbors, unseeded.k_neighbors)


def test_restricted_sets_leave_unfillable_slots_empty(line_data):
    nsf = NeighborSetFinder(line_data)
    nsf.calculate_restricted_neighbor_sets(3, [0, 4])
    np.testing.assert_array_equal(nsf.k_neighbors[0], [4, -1, -1])
    np.testing.assert_array_equal(nsf.k_neighbors[1], [0, 4, -1])
    np.testing.assert_array_equal(nsf.get_neighbor_frequencies(), [5, 0, 0, 0, 5, 0])


def test_restricted_sets_need_considered_points(line_data):
    nsf = NeighborSetFinder(line_data)
    with pytest.raises(DataAvailabilityError):
        nsf.calculate_restricted_neighbor_sets(2, np.zeros(6, dtype=bool))


def test_adding_a_considered_point(random_points):
    considered = [1, 5, 8, 13, 20, 26]
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_restricted_neighbor_sets(3, considered)
    nsf.consider_neighbor(15)

    square = nsf.dist_matrix.to_square()
    expected = brute_force_restricted(square, considered + [15], 3)
    np.testing.assert_array_equal(nsf.k_neighbors, expected)
    assert nsf.considered[15]


def test_removing_a_considered_point(random_points):
    considered = [1, 5, 8, 13, 20, 26]
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_restricted_neighbor_sets(3, considered)
    nsf.consider_neighbor(8, remove=True)

    square = nsf.dist_matrix.to_square()
    expected = brute_force_restricted(square, [1, 5, 13, 20, 26], 3)
    np.testing.assert_array_equal(nsf.k_neighbors, expected)
    assert nsf.get_neighbor_frequencies()[8] == 0


def test_copy_is_independent(line_nsf):
    clone = line_nsf.copy()
    clone.consider_neighbor(1, remove=True)
    assert line_nsf.get_neighbor_frequencies()[1] == 2
    assert clone.get_neighbor_frequencies()[1] == 0


def test_sub_nsf_keeps_the_parent_k(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(5)
    sub = nsf.get_sub_nsf(2)
    assert sub.current_k == 2
    assert nsf.current_k == 5
    np.testing.assert_array_equal(sub.k_neighbors, nsf.k_neighbors[:, :2])


def test_good_and_bad_occurrences(mixed_triplet):
    nsf = NeighborSetFinder(mixed_triplet)
    nsf.calculate_neighbor_sets(2)
    np.testing.assert_array_equal(nsf.get_good_frequencies(), [1, 0, 1])
    np.testing.assert_array_equal(nsf.get_bad_frequencies(), [1, 2, 1])
    summary = nsf.get_occurrence_summary()
    assert summary['occ_mean'] == pytest.approx(2.0)
    assert summary['bad_mean'] == pytest.approx(4 / 3)


def test_label_mismatch_percentages(mixed_triplet):
    nsf = NeighborSetFinder(mixed_triplet)
    nsf.calculate_neighbor_sets(2)
    np.testing.assert_allclose(nsf.get_label_mismatch_percentages(), [1.0, 2 / 3])


def test_direct_and_reverse_entropies(mixed_triplet):
    nsf = NeighborSetFinder(mixed_triplet)
    nsf.calculate_neighbor_sets(2)
    np.testing.assert_allclose(nsf.get_direct_entropies(), [1.0, 0.0, 1.0])
    np.testing.assert_allclose(nsf.get_reverse_entropies(), [1.0, 0.0, 1.0])


def test_class_to_class_matrix(mixed_triplet):
    nsf = NeighborSetFinder(mixed_triplet)
    nsf.calculate_neighbor_sets(2)
    counts = nsf.get_class_to_class_neighbor_matrix(fuzzy=False)
    np.testing.assert_array_equal(counts, [[2, 2], [2, 0]])

    fuzzy = nsf.get_class_to_class_neighbor_matrix(fuzzy=True)
    np.testing.assert_allclose(fuzzy.sum(axis=1), [1.0, 1.0])
    assert fuzzy[0, 0] == pytest.approx(0.5)

    extended = nsf.get_class_to_class_neighbor_matrix(fuzzy=False, extend_by_element=True)
    np.testing.assert_array_equal(extended, [[4, 2], [2, 1]])


def test_class_data_neighbor_relation(line_nsf):
    relation = line_nsf.get_class_data_neighbor_relation()
    assert relation.shape == (2, 6)
    np.testing.assert_array_equal(relation[0], [2, 2, 2, 0, 0, 0])
    np.testing.assert_array_equal(relation.sum(axis=0), line_nsf.get_neighbor_frequencies())


def test_reverse_neighbors(line_nsf):
    reverse = line_nsf.get_reverse_neighbors()
    assert reverse[0] == [1, 2]
    assert reverse[4] == [3, 5]


def test_unlabeled_data_has_no_class_statistics(random_points):
    nsf = NeighborSetFinder(random_points)
    nsf.calculate_neighbor_sets(3)
    assert nsf.get_bad_frequencies().sum() == 0
    assert nsf.get_class_to_class_neighbor_matrix().shape == (0, 0)
    np.testing.assert_array_equal(nsf.get_direct_entropies(), np.zeros(len(random_points)))


def test_nearest_indexes_with_tabu(line_matrix):
    tabu = np.array([False, True, False, False, False, False])
    np.testing.assert_array_equal(nearest_indexes(line_matrix, 0, 2, tabu), [2, 3])


def test_bounded_buffer_keeps_the_smallest_keys():
    buffer = BoundedNeighborBuffer(2)
    for dist, idx in [(3.0, 1), (1.0, 4), (1.0, 2), (0.5, 9)]:
        buffer.insert(dist, idx)
    assert buffer.indexes() == [9, 2]
    assert not buffer.accepts(1.0, 4)


def test_center_of_a_star_is_a_hub():
    X = np.vstack([np.zeros(3), np.eye(3), -np.eye(3)])
    nsf = NeighborSetFinder(X)
    nsf.calculate_neighbor_sets(1)
    np.testing.assert_array_equal(nsf.get_neighbor_frequencies(), [6, 1, 0, 0, 0, 0, 0])
    np.testing.assert_array_equal(nsf.get_hub_indexes(), [0])
    assert nsf.get_hubness_skewness() > 0


def test_restrict_to_builds_an_independent_finder(line_data, line_nsf):
    sub = line_nsf.restrict_to([3, 4, 5])
    sub.calculate_neighbor_sets(2)
    assert sub.size == 3
    np.testing.assert_array_equal(sub.labels, [1, 1, 1])
    np.testing.assert_array_equal(sub.k_neighbors[0], [1, 2])
