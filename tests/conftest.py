import numpy as np
import pytest

from hubness_modules.dataset import DataSet
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.neighbor_sets import NeighborSetFinder


@pytest.fixture
def line_data():
    # Two tight groups on a line: {0, 1, 2} and {10, 11, 12}
    X = np.array([0.0, 1.0, 2.0, 10.0, 11.0, 12.0]).reshape(-1, 1)
    y = np.array([0, 0, 0, 1, 1, 1])
    return DataSet(X, y, name='line')


@pytest.fixture
def line_matrix(line_data):
    return DistanceMatrix.compute(line_data.X)


@pytest.fixture
def line_nsf(line_data, line_matrix):
    nsf = NeighborSetFinder(line_data, line_matrix)
    nsf.calculate_neighbor_sets(2)
    return nsf


@pytest.fixture
def mixed_triplet():
    # Three points where the middle one carries the other label
    X = np.array([0.0, 1.0, 2.0]).reshape(-1, 1)
    return DataSet(X, np.array([0, 1, 0]), name='triplet')


@pytest.fixture
def blobs_data():
    rng = np.random.default_rng(7)
    X = np.vstack([
        rng.normal(loc=(0.0, 0.0), scale=0.5, size=(20, 2)),
        rng.normal(loc=(6.0, 6.0), scale=0.5, size=(20, 2)),
    ])
    y = np.repeat([0, 1], 20)
    return DataSet(X, y, name='blobs')


@pytest.fixture
def three_class_data():
    rng = np.random.default_rng(11)
    X = np.vstack([
        rng.normal(loc=(0.0, 0.0), scale=1.0, size=(15, 2)),
        rng.normal(loc=(3.0, 0.0), scale=1.0, size=(15, 2)),
        rng.normal(loc=(1.5, 3.0), scale=1.0, size=(15, 2)),
    ])
    y = np.repeat([0, 1, 2], 15)
    return DataSet(X, y, name='three_class')


@pytest.fixture
def three_class_nsf(three_class_data):
    nsf = NeighborSetFinder(three_class_data)
    nsf.calculate_neighbor_sets(3)
    return nsf


@pytest.fixture
def random_points():
    rng = np.random.default_rng(3)
    return rng.uniform(size=(30, 3))
