import numpy as np
import pytest

from hubness_modules.dataset import DataSet
from hubness_modules.errors import ConfigurationError, DataAvailabilityError
from hubness_modules.knn_classifier import KNNClassifier
from hubness_modules.neighbor_sets import NeighborSetFinder


@pytest.fixture
def small_labeled():
    return DataSet(np.arange(5, dtype=float), np.array([0, 1, 1, 0, -1]))


def test_ties_go_to_the_lowest_class(small_labeled):
    classifier = KNNClassifier(small_labeled)
    assert classifier.classify(2, [1, 3]) == 0


def test_own_index_and_empty_slots_do_not_vote(small_labeled):
    classifier = KNNClassifier(small_labeled)
    # Point 1 would break the tie for class 1 if it voted for itself
    assert classifier.classify(1, [1, 2, 3, -1]) == 0
    np.testing.assert_array_equal(classifier.class_votes([4, -1, 2]), [0, 1])


def test_only_the_first_k_neighbors_vote(small_labeled):
    classifier = KNNClassifier(small_labeled, k=1)
    assert classifier.classify(0, [2, 3, 3]) == 1


def test_no_errors_on_separated_groups(line_data, line_nsf):
    classifier = KNNClassifier(line_data)
    np.testing.assert_array_equal(classifier.classify_all(line_nsf), line_data.y)
    assert classifier.count_false_predictions(line_nsf) == 0


def test_errors_of_a_prototype_restricted_vote(line_data):
    nsf = NeighborSetFinder(line_data)
    nsf.calculate_restricted_neighbor_sets(1, [0, 3])
    # Prototypes 0 and 3 can only see each other
    assert KNNClassifier(line_data).count_false_predictions(nsf) == 2


def test_invalid_configurations(line_data, random_points):
    with pytest.raises(DataAvailabilityError):
        KNNClassifier(DataSet(random_points))
    with pytest.raises(ConfigurationError):
        KNNClassifier(line_data, k=0)

    other = NeighborSetFinder(random_points)
    other.calculate_neighbor_sets(2)
    with pytest.raises(ConfigurationError):
        KNNClassifier(line_data).count_false_predictions(other)
