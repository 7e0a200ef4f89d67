#!/usr/bin/env python3
"""
Mirror Recovery and Last-Known-Good Fallback

Corrupted or lost limb joints are rebuilt by reflecting the stable
contralateral joint across the body's vertical center axis. Joints that
cannot be mirrored (midline joints, or both sides unusable) fall back to
the most recent confident position seen for that joint.
"""

from typing import Dict, Iterable, Mapping, MutableMapping, Optional, Set

import structlog

from app.services.pose_topology import LIMB_GROUPS, MIRROR_PAIRS, JointId
from app.services.pose_types import Keypoint, Pose

logger = structlog.get_logger()

# Reference joints must beat this score to anchor the mirror axis or act as a source
MIRROR_MIN_SCORE = 0.3
# Score given to a joint restored from the cache: usable, but below a live read
INTERPOLATED_SCORE = 0.5

_CATEGORY_GROUPS = {
    "arm": ("left_arm", "right_arm"),
    "leg": ("left_leg", "right_leg"),
}


def body_center_x(pose: Pose) -> Optional[float]:
    """Mean of the shoulder and hip midpoints, using only confident pairs."""
    centers = []
    for left, right in ((JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER), (JointId.LEFT_HIP, JointId.RIGHT_HIP)):
        if pose.confidence(left) > MIRROR_MIN_SCORE and pose.confidence(right) > MIRROR_MIN_SCORE:
            centers.append((pose.keypoints[left].x + pose.keypoints[right].x) / 2)

    if not centers:
        return None
    return sum(centers) / len(centers)


def mirror_pose(pose: Pose, mirror_source: str, corrupted_joints: Set[int]) -> Pose:
    """
    Rebuild corrupted joints from the opposite side of the body.

    Only joints listed in `corrupted_joints` are touched, so the rest of the
    same limb keeps its real data.

    Args:
        pose: Pose to correct
        mirror_source: Stable side, "left" or "right"
        corrupted_joints: Indices of the joints to rebuild

    Returns:
        New pose; the input is returned unchanged if no body center is available
    """
    center_x = body_center_x(pose)
    if center_x is None:
        return pose

    keypoints = list(pose.keypoints)
    for left_idx, right_idx in MIRROR_PAIRS:
        source_idx, target_idx = (left_idx, right_idx) if mirror_source == "left" else (right_idx, left_idx)
        if target_idx not in corrupted_joints or target_idx >= len(keypoints):
            continue

        source = pose.keypoint(source_idx)
        if source is not None and source.confidence > MIRROR_MIN_SCORE:
            keypoints[target_idx] = Keypoint(
                x=2 * center_x - source.x,
                y=source.y,
                score=source.score,
                name=keypoints[target_idx].name,
            )

    return pose.with_keypoints(keypoints)


def mirror_limbs(pose: Pose, mirror_sources: Mapping[str, str], joints: Iterable[int]) -> Pose:
    """
    Mirror each limb category from its own stable side.

    `mirror_sources` maps "arm"/"leg" to the side to copy from; only joints of
    the opposite group in that category are passed to mirror_pose.
    """
    joints = set(joints)
    corrected = pose
    for category, source in mirror_sources.items():
        left_group, right_group = _CATEGORY_GROUPS[category]
        target_group = right_group if source == "left" else left_group
        targets = joints.intersection(LIMB_GROUPS[target_group])
        if targets:
            corrected = mirror_pose(corrected, source, targets)

    if corrected is not pose:
        logger.debug("Mirrored joints from stable side", sources=dict(mirror_sources), joints=sorted(joints))
    return corrected


def update_last_known_good(
    pose: Pose,
    last_known_good: MutableMapping[int, Keypoint],
    min_confidence: float,
) -> None:
    """Store every confident keypoint as the newest good read for its joint."""
    for i, kp in enumerate(pose.keypoints):
        if kp.confidence >= min_confidence:
            last_known_good[i] = kp


def apply_last_known_good(
    pose: Pose,
    lost_joints: Iterable[int],
    last_known_good: Optional[Dict[int, Keypoint]],
) -> Pose:
    """Restore lost joints from the cache, marked with an interpolated score."""
    lost_joints = list(lost_joints)
    if not lost_joints or not last_known_good:
        return pose

    keypoints = list(pose.keypoints)
    for joint_idx in lost_joints:
        last_good = last_known_good.get(joint_idx)
        if last_good is not None and last_good.confidence > MIRROR_MIN_SCORE and joint_idx < len(keypoints):
            keypoints[joint_idx] = Keypoint(
                x=last_good.x,
                y=last_good.y,
                score=INTERPOLATED_SCORE,
                name=last_good.name,
            )

    return pose.with_keypoints(keypoints)
