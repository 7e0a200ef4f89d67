#!/usr/bin/env python3
"""
Pose Stability Filter

Per-track state machine that turns a raw keypoint stream into a stabilized
one. Each frame goes through:

    joint-loss pass -> whole-pose corruption check -> per-joint mirror
    correction or freeze -> smoothing

NORMAL trusts live detection (with surgical mirror fixes); RECOVERY holds
(or gently simulates) the last trusted pose until enough consecutive stable
frames have been observed. Every pose slot owns independent state, and a
single slot's frames must arrive in temporal order.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import structlog

from app.services.anthropometrics import AnthropometricRatios, compute_anthropometric_ratios
from app.services.corruption_detection import (
    JointLossResult,
    detect_banana,
    detect_joint_loss,
    detect_per_joint_corruption,
)
from app.services.mirror_recovery import apply_last_known_good, mirror_limbs, update_last_known_good
from app.services.pose_geometry import cosine_similarity
from app.services.pose_types import Keypoint, Pose
from app.services.smoothing import simulate_pose, smooth_pose
from app.services.stability_config import StabilityConfig

logger = structlog.get_logger()

# Frames of history a track needs before its proportions become the baseline
BASELINE_MIN_FRAMES = 3


class StabilityState(str, Enum):
    """Filter state of one pose track"""
    NORMAL = "NORMAL"
    RECOVERY = "RECOVERY"


@dataclass
class StabilityFilterResult:
    """Corrected pose plus diagnostics for one input pose"""
    pose: Pose
    state: StabilityState
    is_banana_frame: bool
    stable_count: int
    similarity: Optional[float]
    reason: Optional[str] = None


@dataclass
class PerTrackState:
    """Mutable state owned by exactly one pose slot"""
    current_state: StabilityState = StabilityState.NORMAL
    freeze_pose: Optional[Pose] = None
    prev_freeze_pose: Optional[Pose] = None
    stable_count: int = 0
    prev_pose: Optional[Pose] = None
    # Pose before prev_pose; seeds the simulated drift velocity on freeze
    prior_pose: Optional[Pose] = None
    baseline_ratios: Optional[AnthropometricRatios] = None
    frame_count: int = 0
    last_known_good: Dict[int, Keypoint] = field(default_factory=dict)


class PoseStabilityFilter:
    """Stabilizes per-frame pose estimates for any number of tracked people"""

    def __init__(self, config: Optional[StabilityConfig] = None, enabled: bool = True):
        """
        Initialize the filter.

        Args:
            config: Thresholds and feature flags; defaults when omitted
            enabled: When False every pose passes through untouched
        """
        self._config = config or StabilityConfig()
        self.enabled = enabled
        self._tracks: Dict[int, PerTrackState] = {}

        logger.info(
            "PoseStabilityFilter initialized",
            enabled=enabled,
            mirror_only_mode=self._config.mirror_only_mode,
            enable_mirror_recovery=self._config.enable_mirror_recovery,
            enable_simulation=self._config.enable_simulation,
        )

    @property
    def config(self) -> StabilityConfig:
        return self._config

    @property
    def track_count(self) -> int:
        return len(self._tracks)

    def reset(self) -> None:
        """Drop every track's state (e.g. a new video was loaded)."""
        track_count = len(self._tracks)
        self._tracks.clear()
        logger.info("PoseStabilityFilter reset", cleared_tracks=track_count)

    def get_state(self) -> StabilityState:
        """RECOVERY if any track is recovering, otherwise NORMAL."""
        for track in self._tracks.values():
            if track.current_state is StabilityState.RECOVERY:
                return StabilityState.RECOVERY
        return StabilityState.NORMAL

    def get_track_state(self, pose_index: int) -> Optional[PerTrackState]:
        """State of one slot for inspection, or None if the slot was never seen."""
        return self._tracks.get(pose_index)

    def process_poses(self, poses: List[Pose], frame_index: Optional[int] = None) -> List[StabilityFilterResult]:
        """Process one frame of detections; pose i feeds slot i."""
        return [self.process_frame(pose, pose_index=i, frame_index=frame_index) for i, pose in enumerate(poses)]

    def process_frame(
        self,
        pose: Pose,
        pose_index: int = 0,
        frame_index: Optional[int] = None,
    ) -> StabilityFilterResult:
        """
        Run one raw pose through its slot's state machine.

        Args:
            pose: Raw pose from the upstream estimator
            pose_index: Slot the pose belongs to
            frame_index: Source frame number, used for log context only

        Returns:
            StabilityFilterResult with the corrected pose and diagnostics
        """
        if not self.enabled:
            return StabilityFilterResult(
                pose=pose,
                state=StabilityState.NORMAL,
                is_banana_frame=False,
                stable_count=0,
                similarity=None,
            )

        config = self._config
        track = self._get_track(pose_index)
        track.frame_count += 1

        if track.baseline_ratios is None and track.frame_count > BASELINE_MIN_FRAMES:
            track.baseline_ratios = compute_anthropometric_ratios(pose, config.min_confidence)
            if track.baseline_ratios is not None:
                logger.debug("Baseline ratios captured", pose_index=pose_index, frame_index=frame_index)

        loss = detect_joint_loss(pose, track.prev_pose, track.last_known_good, config)
        pose_to_process = self._recover_lost_joints(pose, loss, track)

        # Cache is fed from the raw read, before any correction
        update_last_known_good(pose, track.last_known_good, config.min_confidence)

        if config.mirror_only_mode:
            return self._process_mirror_only(pose_to_process, loss, track)

        if track.current_state is StabilityState.NORMAL:
            return self._process_normal(pose_to_process, track, pose_index, frame_index)
        return self._process_recovery(pose_to_process, track, pose_index, frame_index)

    def _get_track(self, pose_index: int) -> PerTrackState:
        track = self._tracks.get(pose_index)
        if track is None:
            track = PerTrackState()
            self._tracks[pose_index] = track
            logger.debug("Created pose track", pose_index=pose_index)
        return track

    def _recover_lost_joints(self, pose: Pose, loss: JointLossResult, track: PerTrackState) -> Pose:
        """Mirror lost limb joints, then fill the rest from the last-known-good cache."""
        if not (loss.has_loss and self._config.enable_mirror_recovery):
            return pose

        recovered = pose
        if loss.can_mirror:
            recovered = mirror_limbs(recovered, loss.mirror_sources, loss.lost_joints)
        if loss.fallback_joints:
            recovered = apply_last_known_good(recovered, loss.fallback_joints, track.last_known_good)
        return recovered

    @staticmethod
    def _advance(track: PerTrackState, pose: Pose) -> None:
        track.prior_pose = track.prev_pose
        track.prev_pose = pose.copy()

    def _emit_frozen(self, track: PerTrackState) -> Pose:
        """Frozen pose, or its next simulated drift step when simulation is on."""
        if not (self._config.enable_simulation and track.prev_freeze_pose is not None):
            return track.freeze_pose.copy()

        simulated = simulate_pose(track.freeze_pose, track.prev_freeze_pose, self._config.simulation_decay)
        track.prev_freeze_pose = track.freeze_pose
        track.freeze_pose = simulated
        return simulated.copy()

    def _process_mirror_only(self, pose: Pose, loss: JointLossResult, track: PerTrackState) -> StabilityFilterResult:
        per_joint = detect_per_joint_corruption(pose, track.prev_pose, self._config)
        if per_joint.has_corruption and per_joint.can_mirror:
            pose = mirror_limbs(pose, per_joint.mirror_sources, per_joint.corrupted_joints)

        smoothed = smooth_pose(pose, track.prev_pose, self._config.smoothing_alpha)
        self._advance(track, pose)

        reason = per_joint.first_reason
        if reason is None and loss.has_loss:
            reason = f"Lost joints: {loss.lost_joints}"

        return StabilityFilterResult(
            pose=smoothed,
            state=StabilityState.NORMAL,
            is_banana_frame=loss.has_loss or per_joint.has_corruption,
            stable_count=0,
            similarity=None,
            reason=reason,
        )

    def _process_normal(
        self,
        pose: Pose,
        track: PerTrackState,
        pose_index: int,
        frame_index: Optional[int],
    ) -> StabilityFilterResult:
        config = self._config
        detection = detect_banana(pose, track.prev_pose, track.baseline_ratios, config)

        if not detection.is_banana:
            smoothed = smooth_pose(pose, track.prev_pose, config.smoothing_alpha)
            self._advance(track, pose)
            return StabilityFilterResult(
                pose=smoothed,
                state=StabilityState.NORMAL,
                is_banana_frame=False,
                stable_count=0,
                similarity=detection.similarity,
            )

        per_joint = detect_per_joint_corruption(pose, track.prev_pose, config)
        if config.enable_mirror_recovery and per_joint.can_mirror:
            mirrored = mirror_limbs(pose, per_joint.mirror_sources, per_joint.corrupted_joints)
            smoothed = smooth_pose(mirrored, track.prev_pose, config.smoothing_alpha)
            # The corrected pose is the reference for the next frame
            self._advance(track, smoothed)

            logger.debug(
                "Banana frame repaired by mirroring",
                pose_index=pose_index,
                frame_index=frame_index,
                reason=detection.reason,
                mirror_sources=per_joint.mirror_sources,
            )
            return StabilityFilterResult(
                pose=smoothed,
                state=StabilityState.NORMAL,
                is_banana_frame=True,
                stable_count=0,
                similarity=detection.similarity,
                reason=detection.reason,
            )

        track.current_state = StabilityState.RECOVERY
        if track.prev_pose is not None:
            track.freeze_pose = track.prev_pose
            track.prev_freeze_pose = track.prior_pose or track.prev_pose
        else:
            track.freeze_pose = pose.copy()
            track.prev_freeze_pose = track.freeze_pose
        track.stable_count = 0

        logger.info(
            "Entering recovery",
            pose_index=pose_index,
            frame_index=frame_index,
            reason=detection.reason,
        )
        return StabilityFilterResult(
            pose=self._emit_frozen(track),
            state=StabilityState.RECOVERY,
            is_banana_frame=True,
            stable_count=0,
            similarity=detection.similarity,
            reason=detection.reason,
        )

    def _process_recovery(
        self,
        pose: Pose,
        track: PerTrackState,
        pose_index: int,
        frame_index: Optional[int],
    ) -> StabilityFilterResult:
        config = self._config
        detection = detect_banana(pose, track.freeze_pose, track.baseline_ratios, config)
        similarity = (
            cosine_similarity(pose, track.freeze_pose, config.min_confidence)
            if track.freeze_pose is not None
            else 0.0
        )

        if not detection.is_banana and similarity > config.similarity_threshold:
            track.stable_count += 1
        else:
            track.stable_count = 0

        if track.stable_count >= config.recovery_frames:
            track.current_state = StabilityState.NORMAL
            track.prior_pose = None
            track.prev_pose = pose.copy()
            track.freeze_pose = None
            track.prev_freeze_pose = None

            logger.info(
                "Recovered to normal tracking",
                pose_index=pose_index,
                frame_index=frame_index,
                stable_count=track.stable_count,
            )
            # Smoothing against itself is the identity, so emit a copy
            return StabilityFilterResult(
                pose=pose.copy(),
                state=StabilityState.NORMAL,
                is_banana_frame=False,
                stable_count=track.stable_count,
                similarity=similarity,
            )

        per_joint = detect_per_joint_corruption(pose, track.freeze_pose, config)
        if config.enable_mirror_recovery and per_joint.can_mirror:
            # Freeze snapshot is not advanced by a mirrored frame
            return StabilityFilterResult(
                pose=mirror_limbs(pose, per_joint.mirror_sources, per_joint.corrupted_joints),
                state=StabilityState.RECOVERY,
                is_banana_frame=detection.is_banana,
                stable_count=track.stable_count,
                similarity=similarity,
                reason=detection.reason or per_joint.first_reason,
            )

        return StabilityFilterResult(
            pose=self._emit_frozen(track),
            state=StabilityState.RECOVERY,
            is_banana_frame=detection.is_banana,
            stable_count=track.stable_count,
            similarity=similarity,
            reason=detection.reason,
        )
