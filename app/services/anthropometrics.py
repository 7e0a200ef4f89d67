#!/usr/bin/env python3
"""
Anthropometric Ratio Calculator

Limb-length ratios are near-invariant for a given person regardless of
camera distance, so a per-track baseline of them catches corruption that
still looks continuous frame-to-frame (e.g. a wrist snapping to an
impossible forearm length).
"""

from dataclasses import dataclass
from typing import Optional

from app.services.pose_geometry import segment_length
from app.services.pose_topology import JointId
from app.services.pose_types import Pose


@dataclass(frozen=True)
class AnthropometricRatios:
    """Body proportions of one pose (widths in pixels, ratios dimensionless)"""
    shoulder_width: float
    hip_width: float
    left_arm_ratio: float   # forearm / upper arm
    right_arm_ratio: float
    left_leg_ratio: float   # shin / thigh
    right_leg_ratio: float
    torso_ratio: float      # shoulder-to-hip length / shoulder width


def _limb_ratio(upper: Optional[float], lower: Optional[float]) -> float:
    # Occluded limbs stay neutral so they cannot invalidate the whole baseline
    if upper and lower and upper > 0:
        return lower / upper
    return 1.0


def compute_anthropometric_ratios(
    pose: Pose,
    min_confidence: float = 0.3,
) -> Optional[AnthropometricRatios]:
    """
    Derive body proportions from a pose.

    Args:
        pose: Pose in the 17-point layout
        min_confidence: Minimum keypoint score to use a segment

    Returns:
        Ratios, or None when the shoulder width (the scale reference) is
        missing or shorter than one pixel
    """
    kp = pose.keypoints

    shoulder_width = segment_length(kp, JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER, min_confidence)
    if not shoulder_width or shoulder_width < 1:
        return None

    hip_width = segment_length(kp, JointId.LEFT_HIP, JointId.RIGHT_HIP, min_confidence)

    left_arm_ratio = _limb_ratio(
        segment_length(kp, JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, min_confidence),
        segment_length(kp, JointId.LEFT_ELBOW, JointId.LEFT_WRIST, min_confidence),
    )
    right_arm_ratio = _limb_ratio(
        segment_length(kp, JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, min_confidence),
        segment_length(kp, JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST, min_confidence),
    )
    left_leg_ratio = _limb_ratio(
        segment_length(kp, JointId.LEFT_HIP, JointId.LEFT_KNEE, min_confidence),
        segment_length(kp, JointId.LEFT_KNEE, JointId.LEFT_ANKLE, min_confidence),
    )
    right_leg_ratio = _limb_ratio(
        segment_length(kp, JointId.RIGHT_HIP, JointId.RIGHT_KNEE, min_confidence),
        segment_length(kp, JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE, min_confidence),
    )

    left_torso = segment_length(kp, JointId.LEFT_SHOULDER, JointId.LEFT_HIP, min_confidence)
    right_torso = segment_length(kp, JointId.RIGHT_SHOULDER, JointId.RIGHT_HIP, min_confidence)
    if left_torso and right_torso:
        torso_length = (left_torso + right_torso) / 2
    else:
        torso_length = left_torso or right_torso or shoulder_width

    return AnthropometricRatios(
        shoulder_width=shoulder_width,
        hip_width=hip_width or shoulder_width * 0.8,
        left_arm_ratio=left_arm_ratio,
        right_arm_ratio=right_arm_ratio,
        left_leg_ratio=left_leg_ratio,
        right_leg_ratio=right_leg_ratio,
        torso_ratio=torso_length / shoulder_width,
    )


def check_ratio_deviation(
    current: AnthropometricRatios,
    baseline: AnthropometricRatios,
    tolerance: float,
) -> bool:
    """True if the current proportions deviate from the baseline beyond tolerance."""
    ratio_diffs = [
        abs(current.left_arm_ratio - baseline.left_arm_ratio),
        abs(current.right_arm_ratio - baseline.right_arm_ratio),
        abs(current.left_leg_ratio - baseline.left_leg_ratio),
        abs(current.right_leg_ratio - baseline.right_leg_ratio),
        abs(current.torso_ratio - baseline.torso_ratio),
    ]

    shoulder_change = abs(current.shoulder_width - baseline.shoulder_width) / baseline.shoulder_width
    hip_change = abs(current.hip_width - baseline.hip_width) / baseline.hip_width

    return any(diff > tolerance for diff in ratio_diffs) or shoulder_change > tolerance or hip_change > tolerance
