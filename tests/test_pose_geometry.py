import pytest
from app.services.pose_geometry import calculate_angle, cosine_similarity, distance, segment_length
from app.services.pose_types import Keypoint, Pose


def test_distance():
    assert distance(Keypoint(0, 0, 1.0), Keypoint(3, 4, 1.0)) == pytest.approx(5.0)


def test_segment_length_requires_confident_endpoints():
    """Test that a low-confidence endpoint yields no length."""
    keypoints = [Keypoint(0, 0, 0.9), Keypoint(0, 10, 0.2), Keypoint(6, 8, 0.9)]

    assert segment_length(keypoints, 0, 2) == pytest.approx(10.0)
    assert segment_length(keypoints, 0, 1) is None
    assert segment_length(keypoints, 0, 1, min_confidence=0.1) == pytest.approx(10.0)


def test_segment_length_out_of_range():
    keypoints = [Keypoint(0, 0, 0.9)]
    assert segment_length(keypoints, 0, 5) is None


def test_segment_length_missing_score_is_untrusted():
    keypoints = [Keypoint(0, 0), Keypoint(3, 4, 0.9)]
    assert segment_length(keypoints, 0, 1) is None


def test_calculate_angle():
    """Test right, straight and degenerate angles."""
    vertex = Keypoint(0, 0, 1.0)
    assert calculate_angle(Keypoint(1, 0, 1.0), vertex, Keypoint(0, 1, 1.0)) == pytest.approx(90.0)
    assert calculate_angle(Keypoint(1, 0, 1.0), vertex, Keypoint(-1, 0, 1.0)) == pytest.approx(180.0)
    assert calculate_angle(vertex, vertex, Keypoint(0, 1, 1.0)) == 0.0


def test_cosine_similarity_identical_poses(base_pose):
    assert cosine_similarity(base_pose, base_pose.copy()) == pytest.approx(1.0)


def test_cosine_similarity_is_scale_invariant(base_pose, make_pose):
    assert cosine_similarity(base_pose, make_pose(scale=2.0)) == pytest.approx(1.0)


def test_cosine_similarity_ignores_unconfident_joints(make_pose):
    """Test that a joint missing in either pose is excluded, not zeroed."""
    pose_a = make_pose(scores={9: 0.1}, moved={9: (900.0, 900.0)})
    pose_b = make_pose()

    assert cosine_similarity(pose_a, pose_b) == pytest.approx(1.0)


def test_cosine_similarity_degenerate_inputs(base_pose, occluded_pose):
    assert cosine_similarity(base_pose, Pose(keypoints=base_pose.keypoints[:5])) == 0.0
    assert cosine_similarity(Pose(), Pose()) == 0.0
    assert cosine_similarity(base_pose, occluded_pose) == 0.0
