#!/usr/bin/env python3
"""
Pose Corruption Detection

Three independent detectors feed the stability state machine:

- detect_banana: whole-pose check for geometrically implausible frames
  ("banana frames") using relative metrics only (segment-length ratios,
  vertex-angle deltas, cosine similarity, baseline proportions).
- detect_per_joint_corruption: localizes which limb an angle jump belongs
  to, so a single snapped limb can be rebuilt from the stable side.
- detect_joint_loss: joints whose confidence just collapsed (left frame or
  occluded), as opposed to joints that jumped.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set

import structlog

from app.services.anthropometrics import (
    AnthropometricRatios,
    check_ratio_deviation,
    compute_anthropometric_ratios,
)
from app.services.pose_geometry import (
    calculate_angle,
    cosine_similarity,
    segment_length,
    triplet_confident,
)
from app.services.pose_topology import (
    ANGLE_LIMBS,
    ANGLES_TO_CHECK,
    LIMB_GROUPS,
    MIDLINE_JOINTS,
    SEGMENTS_TO_CHECK,
)
from app.services.pose_types import Keypoint, Pose
from app.services.stability_config import StabilityConfig

logger = structlog.get_logger()

# Segments shorter than this in the reference frame are too noisy to compare
MIN_SEGMENT_LENGTH_PX = 10.0

# Limb category -> (left group, right group)
LIMB_CATEGORIES: Dict[str, tuple] = {
    "arm": ("left_arm", "right_arm"),
    "leg": ("left_leg", "right_leg"),
}


@dataclass
class BananaDetection:
    """Whole-pose corruption verdict"""
    is_banana: bool
    reason: Optional[str] = None
    similarity: Optional[float] = None


@dataclass
class JointCorruption:
    """Angle check outcome for one vertex joint"""
    joint_index: int
    limb: str
    distal_index: int
    is_corrupted: bool
    reason: Optional[str]
    change_value: float


@dataclass
class PerJointCorruptionResult:
    """Which limbs are corrupted and where mirroring can take its source from"""
    corruptions: List[JointCorruption] = field(default_factory=list)
    has_corruption: bool = False
    can_mirror: bool = False
    mirror_source: Optional[str] = None
    # Limb category ("arm"/"leg") -> stable side to mirror from
    mirror_sources: Dict[str, str] = field(default_factory=dict)

    @property
    def corrupted_joints(self) -> Set[int]:
        """Vertex of each corrupted angle plus the distal joint it carries."""
        joints: Set[int] = set()
        for corruption in self.corruptions:
            if corruption.is_corrupted:
                joints.update((corruption.joint_index, corruption.distal_index))
        return joints

    @property
    def first_reason(self) -> Optional[str]:
        for corruption in self.corruptions:
            if corruption.is_corrupted:
                return corruption.reason
        return None


@dataclass
class JointLossResult:
    """Joints that just became untracked and how each can be rebuilt"""
    lost_joints: List[int] = field(default_factory=list)
    has_loss: bool = False
    can_mirror: bool = False
    mirror_source: Optional[str] = None
    mirror_sources: Dict[str, str] = field(default_factory=dict)
    # Lost joints that cannot be mirrored and need the last-known-good cache
    fallback_joints: List[int] = field(default_factory=list)


def _angle_change(current: List[Keypoint], previous: List[Keypoint], idx1: int, idx2: int,
                  idx3: int, min_confidence: float) -> Optional[float]:
    """Absolute vertex-angle change, or None when evidence is insufficient."""
    triplet = (idx1, idx2, idx3)
    if not (triplet_confident(current, triplet, min_confidence)
            and triplet_confident(previous, triplet, min_confidence)):
        return None

    angle_current = calculate_angle(current[idx1], current[idx2], current[idx3])
    angle_previous = calculate_angle(previous[idx1], previous[idx2], previous[idx3])
    return abs(angle_current - angle_previous)


def detect_banana(
    pose: Pose,
    prev_pose: Optional[Pose],
    baseline_ratios: Optional[AnthropometricRatios],
    config: StabilityConfig,
) -> BananaDetection:
    """
    Decide whether the current frame is a banana frame.

    Checks run in fixed priority order and stop at the first failure, so the
    reason names the first violated invariant:

    1. Segment-length ratio against the previous frame
    2. Elbow/knee angle change against the previous frame
    3. Whole-pose cosine similarity
    4. Deviation from the track's baseline proportions

    Args:
        pose: Current (loss-corrected) pose
        prev_pose: Reference pose; None on a track's first frame
        baseline_ratios: Track baseline, if already captured
        config: Filter thresholds

    Returns:
        BananaDetection with the first failing reason and the similarity when
        it was computed
    """
    if prev_pose is None:
        return BananaDetection(is_banana=False)

    current = pose.keypoints
    previous = prev_pose.keypoints
    min_conf = config.min_confidence
    max_change = config.max_segment_change

    for idx1, idx2, name in SEGMENTS_TO_CHECK:
        current_len = segment_length(current, idx1, idx2, min_conf)
        prev_len = segment_length(previous, idx1, idx2, min_conf)

        if current_len and prev_len and prev_len > MIN_SEGMENT_LENGTH_PX:
            change_ratio = current_len / prev_len
            if change_ratio > max_change or change_ratio < 1 / max_change:
                return BananaDetection(
                    is_banana=True,
                    reason=f"{name} length changed {(change_ratio - 1) * 100:.0f}%",
                )

    for idx1, idx2, idx3, name in ANGLES_TO_CHECK:
        change = _angle_change(current, previous, idx1, idx2, idx3, min_conf)
        if change is not None and change > config.max_angle_change:
            return BananaDetection(
                is_banana=True,
                reason=f"{name} angle changed {change:.0f}° in one frame",
            )

    similarity = cosine_similarity(pose, prev_pose, min_conf)
    if similarity < config.similarity_threshold:
        return BananaDetection(
            is_banana=True,
            reason=f"Low similarity: {similarity * 100:.0f}% < {config.similarity_threshold * 100:.0f}%",
            similarity=similarity,
        )

    if baseline_ratios is not None:
        current_ratios = compute_anthropometric_ratios(pose, min_conf)
        if current_ratios and check_ratio_deviation(current_ratios, baseline_ratios, config.ratio_tolerance):
            return BananaDetection(
                is_banana=True,
                reason="Body proportions deviated from baseline",
                similarity=similarity,
            )

    return BananaDetection(is_banana=False, similarity=similarity)


def _choose_sources(corrupted: Mapping[str, bool]) -> Dict[str, str]:
    """Stable side per limb category where exactly one side is affected."""
    sources: Dict[str, str] = {}
    for category, (left_group, right_group) in LIMB_CATEGORIES.items():
        left_bad = corrupted.get(left_group, False)
        right_bad = corrupted.get(right_group, False)
        if left_bad and not right_bad:
            sources[category] = "right"
        elif right_bad and not left_bad:
            sources[category] = "left"
    return sources


def detect_per_joint_corruption(
    pose: Pose,
    prev_pose: Optional[Pose],
    config: StabilityConfig,
) -> PerJointCorruptionResult:
    """
    Run every angle check without short-circuiting and localize the damage.

    Mirroring is possible when exactly one side of a limb category is
    corrupted; the uncorrupted side becomes the mirror source.
    """
    if prev_pose is None:
        return PerJointCorruptionResult()

    current = pose.keypoints
    previous = prev_pose.keypoints
    corruptions: List[JointCorruption] = []
    limb_corrupted: Dict[str, bool] = {}

    for idx1, idx2, idx3, name in ANGLES_TO_CHECK:
        change = _angle_change(current, previous, idx1, idx2, idx3, config.min_confidence)
        if change is None:
            continue

        limb, distal = ANGLE_LIMBS[name]
        is_corrupted = change > config.max_angle_change
        corruptions.append(JointCorruption(
            joint_index=idx2,
            limb=limb,
            distal_index=distal,
            is_corrupted=is_corrupted,
            reason=f"{name} changed {change:.0f}°" if is_corrupted else None,
            change_value=change,
        ))
        if is_corrupted:
            limb_corrupted[limb] = True

    has_corruption = any(c.is_corrupted for c in corruptions)
    sources = _choose_sources(limb_corrupted) if has_corruption else {}

    return PerJointCorruptionResult(
        corruptions=corruptions,
        has_corruption=has_corruption,
        can_mirror=bool(sources),
        # Leg decision wins when both categories are mirrorable
        mirror_source=sources.get("leg", sources.get("arm")),
        mirror_sources=sources,
    )


def detect_joint_loss(
    pose: Pose,
    prev_pose: Optional[Pose],
    last_known_good: Optional[Mapping[int, Keypoint]],
    config: StabilityConfig,
) -> JointLossResult:
    """
    Find joints whose confidence just dropped below the trust threshold.

    A joint is lost when it was confident in the previous frame (or in the
    last-known-good cache) and is not confident now. Lost limb joints are
    mirror candidates only if the whole contralateral limb is confidently
    tracked; midline joints always fall back to the cache.
    """
    if prev_pose is None:
        return JointLossResult()

    min_conf = config.min_confidence
    cache = last_known_good or {}
    lost_joints: List[int] = []

    for i in range(len(pose.keypoints)):
        was_good = prev_pose.confidence(i) >= min_conf or (
            i in cache and cache[i].confidence >= min_conf
        )
        if was_good and pose.confidence(i) < min_conf:
            lost_joints.append(i)

    if not lost_joints:
        return JointLossResult()

    fallback: List[int] = []
    sources: Dict[str, str] = {}

    for category, (left_group, right_group) in LIMB_CATEGORIES.items():
        left_joints = LIMB_GROUPS[left_group]
        right_joints = LIMB_GROUPS[right_group]
        left_lost = [j for j in lost_joints if j in left_joints]
        right_lost = [j for j in lost_joints if j in right_joints]

        if left_lost and not right_lost:
            if all(pose.confidence(j) >= min_conf for j in right_joints):
                sources[category] = "right"
            else:
                fallback.extend(left_lost)
        elif right_lost and not left_lost:
            if all(pose.confidence(j) >= min_conf for j in left_joints):
                sources[category] = "left"
            else:
                fallback.extend(right_lost)
        elif left_lost and right_lost:
            fallback.extend(left_lost + right_lost)

    fallback.extend(j for j in lost_joints if j in MIDLINE_JOINTS)

    result = JointLossResult(
        lost_joints=lost_joints,
        has_loss=True,
        can_mirror=bool(sources),
        # Arm decision wins when both categories are mirrorable
        mirror_source=sources.get("arm", sources.get("leg")),
        mirror_sources=sources,
        fallback_joints=sorted(set(fallback)),
    )

    logger.debug(
        "Joint loss detected",
        lost_joints=lost_joints,
        mirror_sources=sources,
        fallback_joints=result.fallback_joints,
    )
    return result
