#!/usr/bin/env python3
"""
Pose Geometry Primitives

Distance, segment length, vertex angle and whole-pose cosine similarity.
Every function here is total: missing or low-confidence keypoints and
degenerate geometry produce a defined value (None or 0) instead of raising
or propagating NaN.
"""

import math
from typing import List, Optional, Sequence

import numpy as np

from app.services.pose_types import Keypoint, Pose


def distance(p1: Keypoint, p2: Keypoint) -> float:
    """Euclidean distance between two keypoints"""
    return math.hypot(p1.x - p2.x, p1.y - p2.y)


def segment_length(
    keypoints: Sequence[Keypoint],
    idx1: int,
    idx2: int,
    min_confidence: float = 0.3,
) -> Optional[float]:
    """
    Length of the segment between two joints.

    Args:
        keypoints: Keypoints of one pose in joint order
        idx1: Index of the first endpoint
        idx2: Index of the second endpoint
        min_confidence: Minimum score for an endpoint to be trusted

    Returns:
        Distance in pixels, or None if either endpoint is missing or untrusted
    """
    if not (0 <= idx1 < len(keypoints) and 0 <= idx2 < len(keypoints)):
        return None

    kp1 = keypoints[idx1]
    kp2 = keypoints[idx2]
    if kp1.confidence < min_confidence or kp2.confidence < min_confidence:
        return None

    return distance(kp1, kp2)


def calculate_angle(p1: Keypoint, vertex: Keypoint, p2: Keypoint) -> float:
    """
    Angle at `vertex` between the rays to `p1` and `p2`, in degrees.

    Returns 0 when either ray has zero length.
    """
    v1 = np.array([p1.x - vertex.x, p1.y - vertex.y], dtype=float)
    v2 = np.array([p2.x - vertex.x, p2.y - vertex.y], dtype=float)

    mag1 = np.linalg.norm(v1)
    mag2 = np.linalg.norm(v2)
    if mag1 == 0 or mag2 == 0:
        return 0.0

    cos_angle = np.clip(np.dot(v1, v2) / (mag1 * mag2), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def triplet_confident(
    keypoints: Sequence[Keypoint],
    indices: Sequence[int],
    min_confidence: float,
) -> bool:
    """True when every listed joint exists and meets min_confidence."""
    return all(
        0 <= idx < len(keypoints) and keypoints[idx].confidence >= min_confidence
        for idx in indices
    )


def cosine_similarity(pose_a: Pose, pose_b: Pose, min_confidence: float = 0.3) -> float:
    """
    Holistic shape similarity between two poses.

    Each pose is treated as a flattened [x1, y1, x2, y2, ...] vector. Only
    joints confident in both poses contribute, so occluded joints are
    excluded rather than counted as zeros.

    Returns:
        Similarity in [-1, 1]; 0 for mismatched layouts, no shared confident
        joints, or a zero-magnitude vector
    """
    keypoints_a = pose_a.keypoints
    keypoints_b = pose_b.keypoints
    if len(keypoints_a) != len(keypoints_b) or not keypoints_a:
        return 0.0

    mask = [
        kp_a.confidence >= min_confidence and kp_b.confidence >= min_confidence
        for kp_a, kp_b in zip(keypoints_a, keypoints_b)
    ]
    if not any(mask):
        return 0.0

    vec_a = _flatten([kp for kp, keep in zip(keypoints_a, mask) if keep])
    vec_b = _flatten([kp for kp, keep in zip(keypoints_b, mask) if keep])

    magnitude_a = np.linalg.norm(vec_a)
    magnitude_b = np.linalg.norm(vec_b)
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return float(np.dot(vec_a, vec_b) / (magnitude_a * magnitude_b))


def _flatten(keypoints: List[Keypoint]) -> np.ndarray:
    return np.array([[kp.x, kp.y] for kp in keypoints], dtype=float).ravel()
