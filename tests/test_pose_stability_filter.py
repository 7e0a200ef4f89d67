import math
import pytest
from app.services.pose_stability_filter import PoseStabilityFilter, StabilityState
from app.services.pose_topology import JointId
from app.services.stability_config import StabilityConfig

SNAPPED_RIGHT_WRIST = {JointId.RIGHT_WRIST: (130.0 - 2 * math.hypot(10, 80), 230.0)}


def feed(stability_filter, poses, start=0):
    return [
        stability_filter.process_frame(pose, frame_index=start + i)
        for i, pose in enumerate(poses)
    ]


def xs(pose):
    return [kp.x for kp in pose.keypoints]


@pytest.fixture
def no_mirror_filter():
    return PoseStabilityFilter(StabilityConfig(enable_mirror_recovery=False))


def test_first_frame_is_trusted(make_pose):
    """Test that the first frame of a track passes through as-is."""
    stability_filter = PoseStabilityFilter()
    pose = make_pose(moved=SNAPPED_RIGHT_WRIST)

    result = stability_filter.process_frame(pose)

    assert result.state == StabilityState.NORMAL
    assert not result.is_banana_frame
    assert result.pose.keypoints == pose.keypoints


def test_stable_sequence(base_pose):
    stability_filter = PoseStabilityFilter()
    results = feed(stability_filter, [base_pose.copy() for _ in range(6)])

    for result in results:
        assert result.state == StabilityState.NORMAL
        assert not result.is_banana_frame
        assert xs(result.pose) == pytest.approx(xs(base_pose))

    track = stability_filter.get_track_state(0)
    assert track.frame_count == 6
    assert track.baseline_ratios is not None


def test_snapped_wrist_is_mirrored(base_pose, make_pose):
    """Test that one snapped limb is rebuilt from the stable side without freezing."""
    stability_filter = PoseStabilityFilter()
    feed(stability_filter, [base_pose.copy() for _ in range(10)])

    result = stability_filter.process_frame(make_pose(moved=SNAPPED_RIGHT_WRIST), frame_index=10)

    assert result.is_banana_frame
    assert result.state == StabilityState.NORMAL
    assert "Right Forearm" in result.reason
    wrist = result.pose.keypoints[JointId.RIGHT_WRIST]
    assert wrist.x == pytest.approx(120.0)
    assert wrist.y == pytest.approx(310.0)
    assert stability_filter.get_state() == StabilityState.NORMAL


def test_mirrored_arm_matches_source_arm(base_pose, make_pose):
    stability_filter = PoseStabilityFilter()
    feed(stability_filter, [base_pose.copy() for _ in range(5)])

    result = stability_filter.process_frame(make_pose(moved=SNAPPED_RIGHT_WRIST), frame_index=5)
    kp = result.pose.keypoints

    right = math.hypot(kp[8].x - kp[10].x, kp[8].y - kp[10].y)
    left = math.hypot(kp[7].x - kp[9].x, kp[7].y - kp[9].y)
    assert right == pytest.approx(left)


def test_full_occlusion_enters_recovery(no_mirror_filter, base_pose, occluded_pose):
    """Test that an occluded frame freezes the last trusted pose."""
    feed(no_mirror_filter, [base_pose.copy() for _ in range(10)])

    results = feed(no_mirror_filter, [occluded_pose.copy() for _ in range(4)], start=10)

    for result in results:
        assert result.state == StabilityState.RECOVERY
        assert result.is_banana_frame
        assert result.stable_count == 0
        assert xs(result.pose) == pytest.approx(xs(base_pose))
        assert result.pose.keypoints[0].score == 0.9
    assert results[0].reason.startswith("Low similarity")
    assert no_mirror_filter.get_state() == StabilityState.RECOVERY


def test_recovery_needs_consecutive_stable_frames(no_mirror_filter, base_pose, occluded_pose):
    feed(no_mirror_filter, [base_pose.copy() for _ in range(10)])
    feed(no_mirror_filter, [occluded_pose.copy() for _ in range(4)], start=10)

    results = feed(no_mirror_filter, [base_pose.copy() for _ in range(4)], start=14)

    assert [r.stable_count for r in results] == [1, 2, 3, 4]
    assert [r.state for r in results] == [StabilityState.RECOVERY] * 3 + [StabilityState.NORMAL]
    assert not results[-1].is_banana_frame
    assert xs(results[-1].pose) == pytest.approx(xs(base_pose))
    assert no_mirror_filter.get_state() == StabilityState.NORMAL


def test_unstable_frame_resets_stable_count(no_mirror_filter, base_pose, occluded_pose):
    feed(no_mirror_filter, [base_pose.copy() for _ in range(5)])
    feed(no_mirror_filter, [occluded_pose.copy()], start=5)

    results = feed(
        no_mirror_filter,
        [base_pose.copy(), base_pose.copy(), occluded_pose.copy(), base_pose.copy()],
        start=6,
    )

    assert [r.stable_count for r in results] == [1, 2, 0, 1]
    assert all(r.state == StabilityState.RECOVERY for r in results)


def test_recovered_pose_is_a_copy(no_mirror_filter, base_pose, occluded_pose):
    feed(no_mirror_filter, [base_pose.copy() for _ in range(5)])
    feed(no_mirror_filter, [occluded_pose.copy()], start=5)
    live = [base_pose.copy() for _ in range(4)]

    results = feed(no_mirror_filter, live, start=6)

    assert results[-1].state == StabilityState.NORMAL
    assert results[-1].pose is not live[-1]
    assert results[-1].pose.keypoints == live[-1].keypoints


def test_midline_joint_without_history_passes_through(make_pose):
    """Test that a never-confident nose is neither mirrored nor restored."""
    stability_filter = PoseStabilityFilter()
    feed(stability_filter, [make_pose(scores={JointId.NOSE: 0.1}) for _ in range(5)])

    result = stability_filter.process_frame(
        make_pose(scores={JointId.NOSE: 0.1}, moved={JointId.NOSE: (205.0, 85.0)}),
        frame_index=5,
    )

    nose = result.pose.keypoints[JointId.NOSE]
    assert (nose.x, nose.y, nose.score) == (205.0, 85.0, 0.1)
    assert result.state == StabilityState.NORMAL


def test_occluded_nose_restored_from_cache(base_pose, make_pose):
    stability_filter = PoseStabilityFilter()
    feed(stability_filter, [base_pose.copy() for _ in range(5)])

    result = stability_filter.process_frame(
        make_pose(scores={JointId.NOSE: 0.1}, moved={JointId.NOSE: (0.0, 0.0)}),
        frame_index=5,
    )

    nose = result.pose.keypoints[JointId.NOSE]
    assert nose.x == pytest.approx(200.0)
    assert nose.y == pytest.approx(80.0)
    assert nose.score == 0.5
    assert result.state == StabilityState.NORMAL


def test_lost_wrist_mirrored_from_other_arm(base_pose, make_pose):
    stability_filter = PoseStabilityFilter()
    feed(stability_filter, [base_pose.copy() for _ in range(5)])

    result = stability_filter.process_frame(
        make_pose(scores={JointId.LEFT_WRIST: 0.05}, moved={JointId.LEFT_WRIST: (0.0, 0.0)}),
        frame_index=5,
    )

    wrist = result.pose.keypoints[JointId.LEFT_WRIST]
    assert wrist.x == pytest.approx(280.0)
    assert wrist.y == pytest.approx(310.0)
    assert result.state == StabilityState.NORMAL


def test_mirror_only_mode_never_freezes(base_pose, make_pose):
    """Test that a whole-pose banana is smoothed, not frozen, in mirror-only mode."""
    stability_filter = PoseStabilityFilter(StabilityConfig(mirror_only_mode=True))
    feed(stability_filter, [base_pose.copy() for _ in range(5)])

    result = stability_filter.process_frame(make_pose(scale=2.0), frame_index=5)

    assert result.state == StabilityState.NORMAL
    assert stability_filter.get_state() == StabilityState.NORMAL
    assert xs(result.pose) == pytest.approx([1.7 * x for x in xs(base_pose)])


def test_mirror_only_mode_mirrors_snapped_limb(base_pose, make_pose):
    stability_filter = PoseStabilityFilter(StabilityConfig(mirror_only_mode=True))
    feed(stability_filter, [base_pose.copy() for _ in range(5)])

    result = stability_filter.process_frame(make_pose(moved=SNAPPED_RIGHT_WRIST), frame_index=5)

    assert result.is_banana_frame
    assert result.state == StabilityState.NORMAL
    assert result.pose.keypoints[JointId.RIGHT_WRIST].x == pytest.approx(120.0)


def test_simulation_drifts_frozen_pose(make_pose, occluded_pose):
    """Test that a frozen pose keeps moving along its last velocity, damped."""
    config = StabilityConfig(enable_mirror_recovery=False, enable_simulation=True)
    stability_filter = PoseStabilityFilter(config)
    feed(stability_filter, [make_pose(shift_x=2.0 * i) for i in range(6)])

    first, second = feed(stability_filter, [occluded_pose.copy(), occluded_pose.copy()], start=6)

    shoulder_x = 250.0 + 10.0
    assert first.state == StabilityState.RECOVERY
    assert first.pose.keypoints[JointId.LEFT_SHOULDER].x == pytest.approx(shoulder_x + 1.8)
    assert second.pose.keypoints[JointId.LEFT_SHOULDER].x == pytest.approx(shoulder_x + 1.8 + 1.62)
    assert second.pose.keypoints[JointId.LEFT_SHOULDER].y == pytest.approx(150.0)


def test_slots_are_independent(base_pose, occluded_pose):
    stability_filter = PoseStabilityFilter(StabilityConfig(enable_mirror_recovery=False))
    for i in range(5):
        stability_filter.process_poses([base_pose.copy(), base_pose.copy()], frame_index=i)

    results = stability_filter.process_poses([occluded_pose.copy(), base_pose.copy()], frame_index=5)

    assert results[0].state == StabilityState.RECOVERY
    assert results[1].state == StabilityState.NORMAL
    assert stability_filter.get_state() == StabilityState.RECOVERY
    assert stability_filter.get_track_state(1).current_state == StabilityState.NORMAL
    assert stability_filter.track_count == 2


def test_reset_clears_tracks(no_mirror_filter, base_pose, occluded_pose):
    feed(no_mirror_filter, [base_pose.copy(), base_pose.copy(), occluded_pose.copy()])
    assert no_mirror_filter.get_state() == StabilityState.RECOVERY

    no_mirror_filter.reset()

    assert no_mirror_filter.track_count == 0
    assert no_mirror_filter.get_state() == StabilityState.NORMAL
    assert no_mirror_filter.get_track_state(0) is None


def test_disabled_filter_passes_through(make_pose):
    stability_filter = PoseStabilityFilter(enabled=False)
    pose = make_pose(scale=3.0)

    result = stability_filter.process_frame(pose)

    assert result.pose is pose
    assert result.state == StabilityState.NORMAL
    assert stability_filter.track_count == 0


def test_short_pose_does_not_raise(base_pose, make_pose):
    """Test that a pose missing the last keypoint is still processed."""
    stability_filter = PoseStabilityFilter()
    short = base_pose.with_keypoints(base_pose.keypoints[:16])
    feed(stability_filter, [short.copy() for _ in range(5)])

    # Left knee bends sharply; its right-side source ankle does not exist
    bent = make_pose(moved={JointId.LEFT_ANKLE: (350.0, 430.0)})
    result = stability_filter.process_frame(bent.with_keypoints(bent.keypoints[:16]), frame_index=5)

    assert result.is_banana_frame
    assert result.state == StabilityState.NORMAL
    assert len(result.pose.keypoints) == 16
    assert result.pose.keypoints[JointId.LEFT_KNEE].x == pytest.approx(240.0)


def test_caller_edits_do_not_reach_filter_state(no_mirror_filter, base_pose, occluded_pose):
    """Test that mutating inputs or outputs in place leaves the frozen pose intact."""
    inputs = [base_pose.copy() for _ in range(5)]
    feed(no_mirror_filter, inputs)

    frozen = no_mirror_filter.process_frame(occluded_pose.copy(), frame_index=5)
    track = no_mirror_filter.get_track_state(0)
    assert frozen.pose is not inputs[-1]
    assert frozen.pose is not track.freeze_pose

    inputs[-1].keypoints[JointId.LEFT_SHOULDER] = inputs[-1].keypoints[JointId.LEFT_SHOULDER].moved_to(0.0, 0.0)
    frozen.pose.keypoints.clear()

    result = no_mirror_filter.process_frame(occluded_pose.copy(), frame_index=6)

    assert result.state == StabilityState.RECOVERY
    assert xs(result.pose) == pytest.approx(xs(base_pose))
