#!/usr/bin/env python3
"""
Joint History Tracker

Records relative, scale-independent metrics of a pose track over time:
segment lengths (raw and torso-normalized), joint angles, and joint
velocity/acceleration measured relative to the body center. Camera or
subject translation does not show up in these series, so they separate
real pose corruption from legitimate movement and feed displacement charts
and velocity consumers downstream of the stability filter.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

import structlog

from app.services.pose_geometry import calculate_angle, distance, triplet_confident
from app.services.pose_topology import JointId
from app.services.pose_types import Keypoint, Pose

logger = structlog.get_logger()

# (name, joint1, joint2, category)
BODY_SEGMENTS: List[Tuple[str, int, int, str]] = [
    ("Left Upper Arm", JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, "arm"),
    ("Left Forearm", JointId.LEFT_ELBOW, JointId.LEFT_WRIST, "arm"),
    ("Right Upper Arm", JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, "arm"),
    ("Right Forearm", JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST, "arm"),
    ("Left Thigh", JointId.LEFT_HIP, JointId.LEFT_KNEE, "leg"),
    ("Left Shin", JointId.LEFT_KNEE, JointId.LEFT_ANKLE, "leg"),
    ("Right Thigh", JointId.RIGHT_HIP, JointId.RIGHT_KNEE, "leg"),
    ("Right Shin", JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE, "leg"),
    ("Shoulders", JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER, "torso"),
    ("Hips", JointId.LEFT_HIP, JointId.RIGHT_HIP, "torso"),
    ("Left Torso", JointId.LEFT_SHOULDER, JointId.LEFT_HIP, "torso"),
    ("Right Torso", JointId.RIGHT_SHOULDER, JointId.RIGHT_HIP, "torso"),
]

# (name, joint1, vertex, joint3)
JOINT_ANGLES: List[Tuple[str, int, int, int]] = [
    ("Left Elbow", JointId.LEFT_SHOULDER, JointId.LEFT_ELBOW, JointId.LEFT_WRIST),
    ("Right Elbow", JointId.RIGHT_SHOULDER, JointId.RIGHT_ELBOW, JointId.RIGHT_WRIST),
    ("Left Shoulder", JointId.LEFT_ELBOW, JointId.LEFT_SHOULDER, JointId.LEFT_HIP),
    ("Right Shoulder", JointId.RIGHT_ELBOW, JointId.RIGHT_SHOULDER, JointId.RIGHT_HIP),
    ("Left Knee", JointId.LEFT_HIP, JointId.LEFT_KNEE, JointId.LEFT_ANKLE),
    ("Right Knee", JointId.RIGHT_HIP, JointId.RIGHT_KNEE, JointId.RIGHT_ANKLE),
    ("Left Hip", JointId.LEFT_SHOULDER, JointId.LEFT_HIP, JointId.LEFT_KNEE),
    ("Right Hip", JointId.RIGHT_SHOULDER, JointId.RIGHT_HIP, JointId.RIGHT_KNEE),
]

TRACKABLE_JOINTS: List[Tuple[str, int]] = [
    ("Nose", JointId.NOSE),
    ("Left Shoulder", JointId.LEFT_SHOULDER),
    ("Right Shoulder", JointId.RIGHT_SHOULDER),
    ("Left Elbow", JointId.LEFT_ELBOW),
    ("Right Elbow", JointId.RIGHT_ELBOW),
    ("Left Wrist", JointId.LEFT_WRIST),
    ("Right Wrist", JointId.RIGHT_WRIST),
    ("Left Hip", JointId.LEFT_HIP),
    ("Right Hip", JointId.RIGHT_HIP),
    ("Left Knee", JointId.LEFT_KNEE),
    ("Right Knee", JointId.RIGHT_KNEE),
    ("Left Ankle", JointId.LEFT_ANKLE),
    ("Right Ankle", JointId.RIGHT_ANKLE),
]

_CORE_JOINTS = (JointId.LEFT_SHOULDER, JointId.RIGHT_SHOULDER, JointId.LEFT_HIP, JointId.RIGHT_HIP)

# Normalizer used when the torso is not visible
FALLBACK_NORMALIZER_PX = 100.0


@dataclass
class SegmentHistoryPoint:
    frame: int
    timestamp: float
    length: float
    normalized_length: float  # relative to torso height
    length_change: float      # ratio to previous sample, 1.0 = no change
    is_banana: bool


@dataclass
class AngleHistoryPoint:
    frame: int
    timestamp: float
    angle: float
    angle_change: float
    is_banana: bool


@dataclass
class AccelerationHistoryPoint:
    frame: int
    timestamp: float
    relative_x: float
    relative_y: float
    velocity_x: float
    velocity_y: float
    velocity: float
    acceleration_x: float
    acceleration_y: float
    acceleration: float
    is_banana: bool


@dataclass
class RelativeHistoryData:
    """Snapshot of every recorded series, keyed by segment/angle/joint name"""
    segments: Dict[str, List[SegmentHistoryPoint]] = field(default_factory=dict)
    angles: Dict[str, List[AngleHistoryPoint]] = field(default_factory=dict)
    acceleration: Dict[str, List[AccelerationHistoryPoint]] = field(default_factory=dict)


def torso_height(keypoints: List[Keypoint], min_confidence: float) -> Optional[float]:
    """Mean shoulder-to-hip length; None unless all four core joints are confident."""
    if not triplet_confident(keypoints, _CORE_JOINTS, min_confidence):
        return None
    left = distance(keypoints[JointId.LEFT_SHOULDER], keypoints[JointId.LEFT_HIP])
    right = distance(keypoints[JointId.RIGHT_SHOULDER], keypoints[JointId.RIGHT_HIP])
    return (left + right) / 2


def body_center(keypoints: List[Keypoint], min_confidence: float) -> Optional[Tuple[float, float]]:
    """Centroid of the confident core joints; needs at least two of them."""
    core = [
        keypoints[idx] for idx in _CORE_JOINTS
        if idx < len(keypoints) and keypoints[idx].confidence >= min_confidence
    ]
    if len(core) < 2:
        return None
    return sum(kp.x for kp in core) / len(core), sum(kp.y for kp in core) / len(core)


class JointHistoryTracker:
    """Bounded per-track history of relative pose metrics"""

    def __init__(self, fps: float = 30.0, min_confidence: float = 0.3, max_points: int = 1000):
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = fps
        self.min_confidence = min_confidence
        self.max_points = max_points
        self._segments: Dict[str, Deque[SegmentHistoryPoint]] = {}
        self._angles: Dict[str, Deque[AngleHistoryPoint]] = {}
        self._acceleration: Dict[str, Deque[AccelerationHistoryPoint]] = {}

    def _series(self, store: Dict[str, Deque], name: str) -> Deque:
        if name not in store:
            store[name] = deque(maxlen=self.max_points)
        return store[name]

    def record(self, pose: Optional[Pose], frame_index: int, is_banana: bool = False) -> None:
        """Append one frame's metrics; joints below min_confidence are skipped."""
        if pose is None:
            return

        keypoints = pose.keypoints
        timestamp = frame_index / self.fps
        min_conf = self.min_confidence
        torso = torso_height(keypoints, min_conf)

        for name, idx1, idx2, _category in BODY_SEGMENTS:
            if not triplet_confident(keypoints, (idx1, idx2), min_conf):
                continue
            length = distance(keypoints[idx1], keypoints[idx2])
            history = self._series(self._segments, name)

            length_change = 1.0
            if history and history[-1].length > 0:
                length_change = length / history[-1].length

            history.append(SegmentHistoryPoint(
                frame=frame_index,
                timestamp=timestamp,
                length=length,
                normalized_length=length / (torso or FALLBACK_NORMALIZER_PX),
                length_change=length_change,
                is_banana=is_banana,
            ))

        for name, idx1, vertex, idx3 in JOINT_ANGLES:
            if not triplet_confident(keypoints, (idx1, vertex, idx3), min_conf):
                continue
            angle = calculate_angle(keypoints[idx1], keypoints[vertex], keypoints[idx3])
            history = self._series(self._angles, name)
            angle_change = abs(angle - history[-1].angle) if history else 0.0

            history.append(AngleHistoryPoint(
                frame=frame_index,
                timestamp=timestamp,
                angle=angle,
                angle_change=angle_change,
                is_banana=is_banana,
            ))

        center = body_center(keypoints, min_conf)
        if center is None:
            return

        for name, idx in TRACKABLE_JOINTS:
            if not triplet_confident(keypoints, (idx,), min_conf):
                continue
            kp = keypoints[idx]
            relative_x = kp.x - center[0]
            relative_y = kp.y - center[1]
            history = self._series(self._acceleration, name)

            velocity_x = velocity_y = 0.0
            acceleration_x = acceleration_y = 0.0
            if history:
                prev = history[-1]
                velocity_x = relative_x - prev.relative_x
                velocity_y = relative_y - prev.relative_y
                acceleration_x = velocity_x - prev.velocity_x
                acceleration_y = velocity_y - prev.velocity_y

            history.append(AccelerationHistoryPoint(
                frame=frame_index,
                timestamp=timestamp,
                relative_x=relative_x,
                relative_y=relative_y,
                velocity_x=velocity_x,
                velocity_y=velocity_y,
                velocity=math.hypot(velocity_x, velocity_y),
                acceleration_x=acceleration_x,
                acceleration_y=acceleration_y,
                acceleration=math.hypot(acceleration_x, acceleration_y),
                is_banana=is_banana,
            ))

    def segment_history(self, name: str) -> List[SegmentHistoryPoint]:
        return list(self._segments.get(name, ()))

    def angle_history(self, name: str) -> List[AngleHistoryPoint]:
        return list(self._angles.get(name, ()))

    def acceleration_history(self, name: str) -> List[AccelerationHistoryPoint]:
        return list(self._acceleration.get(name, ()))

    def history(self) -> RelativeHistoryData:
        return RelativeHistoryData(
            segments={name: list(points) for name, points in self._segments.items()},
            angles={name: list(points) for name, points in self._angles.items()},
            acceleration={name: list(points) for name, points in self._acceleration.items()},
        )

    def clear(self) -> None:
        self._segments.clear()
        self._angles.clear()
        self._acceleration.clear()
        logger.debug("Joint history cleared")
