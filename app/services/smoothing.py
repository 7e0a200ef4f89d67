"""
Positional smoothing and frozen-pose motion simulation.
"""

from typing import Optional

from app.services.pose_types import Pose

# Keypoints below this score have no trustworthy value to blend
SMOOTH_MIN_SCORE = 0.3


def smooth_pose(pose: Pose, prev_pose: Optional[Pose], alpha: float = 0.7) -> Pose:
    """
    Exponential smoothing: new = alpha * current + (1 - alpha) * previous.

    Low-confidence keypoints pass through unsmoothed.
    """
    if prev_pose is None:
        return pose

    smoothed = []
    for i, kp in enumerate(pose.keypoints):
        prev_kp = prev_pose.keypoint(i)
        if prev_kp is None or kp.confidence < SMOOTH_MIN_SCORE:
            smoothed.append(kp)
            continue
        smoothed.append(kp.moved_to(
            alpha * kp.x + (1 - alpha) * prev_kp.x,
            alpha * kp.y + (1 - alpha) * prev_kp.y,
        ))

    return pose.with_keypoints(smoothed)


def simulate_pose(freeze_pose: Pose, prev_freeze_pose: Optional[Pose], decay: float = 0.9) -> Pose:
    """
    Drift a frozen pose along its last observed velocity, damped by `decay`.

    Purely cosmetic continuity while a track is frozen; never feed this
    into numeric analysis.
    """
    if prev_freeze_pose is None:
        return freeze_pose

    simulated = []
    for i, kp in enumerate(freeze_pose.keypoints):
        prev_kp = prev_freeze_pose.keypoint(i)
        if prev_kp is None or kp.confidence < SMOOTH_MIN_SCORE:
            simulated.append(kp)
            continue
        vx = (kp.x - prev_kp.x) * decay
        vy = (kp.y - prev_kp.y) * decay
        simulated.append(kp.moved_to(kp.x + vx, kp.y + vy))

    return freeze_pose.with_keypoints(simulated)
