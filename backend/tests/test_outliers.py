import pytest

from hive_analysis.services.outliers import compute_outlier_scores, flag_outliers, mad_z_scores


def test_mad_z_scores_use_median_absolute_deviation():
    scores = mad_z_scores([1.0, 2.0, 3.0, 4.0, 100.0])

    # median 3, deviations [2, 1, 0, 1, 97] -> MAD 1
    assert scores.tolist() == pytest.approx([1.349, 0.6745, 0.0, 0.6745, 65.4265])


def test_mad_z_scores_are_zero_when_distances_match():
    assert mad_z_scores([0.2, 0.2, 0.2, 0.9]).tolist() == [0.0, 0.0, 0.0, 0.0]
    assert mad_z_scores([]).size == 0


def test_small_clusters_are_not_scored():
    labels = [0] * 6 + [1] * 3
    distances = [0.1, 0.2, 0.3, 0.4, 0.5, 5.0, 0.1, 0.2, 9.0]

    scores = compute_outlier_scores(labels, distances, min_cluster_size=6)

    assert scores[6:] == [None, None, None]
    assert all(isinstance(score, float) for score in scores[:6])
    assert scores[5] == max(scores[:6])


def test_compute_outlier_scores_rejects_length_mismatch():
    with pytest.raises(ValueError):
        compute_outlier_scores([0, 0], [0.1])


def test_flag_outliers_applies_threshold_and_ratio_cap():
    labels = [0] * 10
    scores = [0.0, 0.5, 4.0, 0.1, 9.0, 0.2, 6.0, 0.3, 0.0, 0.1]

    # cap is floor(10 * 0.2) = 2, so the 4.0 candidate is dropped
    assert flag_outliers(labels, scores, threshold=3.5, max_ratio=0.2) == [4, 6]
    assert flag_outliers(labels, scores, threshold=3.5, max_ratio=0.5) == [2, 4, 6]


def test_flag_outliers_ignores_unscored_positions():
    assert flag_outliers([0, 0, 1], [None, None, None]) == []


def test_scores_feed_flagging_per_cluster():
    tight = [0.10, 0.11, 0.12] * 3 + [0.9]
    labels = [0] * 10 + [1] * 10
    distances = tight + tight

    scores = compute_outlier_scores(labels, distances, min_cluster_size=6)

    assert flag_outliers(labels, scores, threshold=3.5, max_ratio=0.2) == [9, 19]
