"""
End-to-end runs through the whole engine: distances, kNN sets, hubness
statistics, a clustering evaluation and an instance selection.
"""

import numpy as np

from hubness_modules import hubness_stats
from hubness_modules.distance_matrix import DistanceMatrix
from hubness_modules.instance_selectors import GCNN
from hubness_modules.knn_classifier import KNNClassifier
from hubness_modules.neighbor_sets import NeighborSetFinder
from hubness_modules.quality_indices import QUALITY_INDICES


def test_line_pipeline(tmp_path, line_data):
    path = tmp_path / "line.dmat"
    DistanceMatrix.compute(line_data.X).save(path)
    dmat = DistanceMatrix.load(path)

    nsf = NeighborSetFinder(line_data, dmat)
    nsf.calculate_neighbor_sets(2)
    np.testing.assert_array_equal(nsf.k_neighbors[0], [1, 2])
    np.testing.assert_array_equal(nsf.k_neighbors[3], [4, 5])
    assert nsf.get_neighbor_frequencies()[1] == 2
    assert nsf.get_bad_frequencies().sum() == 0

    dunn = QUALITY_INDICES['Dunn'](line_data.y, line_data, dmat).validity()
    assert dunn > 1

    protos = GCNN(nsf, random_state=0).reduce_data_set()
    assert set(line_data.y[protos]) == {0, 1}
    assert len(protos) <= line_data.size()


def test_blobs_pipeline(blobs_data):
    dmat = DistanceMatrix.compute(blobs_data.X, num_threads=2)
    nsf = NeighborSetFinder(blobs_data, dmat, num_threads=2)
    nsf.calculate_neighbor_sets(5)

    skew = hubness_stats.skewness_kurtosis(nsf)['skewness']
    assert len(skew) == 5
    assert np.all(hubness_stats.label_mismatch(nsf) == 0)

    selector = GCNN(nsf, random_state=3)
    protos = selector.reduce_data_set()
    assert set(blobs_data.y[protos]) == {0, 1}
    assert len(protos) <= blobs_data.size()

    proto_nsf = NeighborSetFinder(blobs_data, dmat)
    proto_nsf.calculate_restricted_neighbor_sets(1, protos, seed_finder=nsf)
    predictions = KNNClassifier(blobs_data).classify_all(proto_nsf)
    others = np.setdiff1d(np.arange(blobs_data.size()), protos)
    np.testing.assert_array_equal(predictions[others], blobs_data.y[others])

    selector.calculate_prototype_hubness(1)
    assert selector.proto_hubness.sum() == blobs_data.size()
    assert selector.proto_bad_hubness.sum() == proto_nsf.get_bad_frequencies().sum()
