"""
Keypoint and pose value types consumed and produced by the stability filter.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional


@dataclass(frozen=True)
class Keypoint:
    """Single 2D keypoint estimate"""
    x: float
    y: float
    score: Optional[float] = None
    name: Optional[str] = None

    @property
    def confidence(self) -> float:
        """Score with an absent value read as "not observed"."""
        return self.score if self.score is not None else 0.0

    def moved_to(self, x: float, y: float) -> "Keypoint":
        return replace(self, x=x, y=y)


@dataclass(frozen=True)
class BoundingBox:
    """Person bounding box reported by the upstream estimator"""
    x_min: float
    y_min: float
    width: float
    height: float
    score: Optional[float] = None


@dataclass
class Pose:
    """
    One person's skeleton for one frame.

    Transforms always build a new Pose; keypoint order is never changed.
    """
    keypoints: List[Keypoint] = field(default_factory=list)
    score: Optional[float] = None
    box: Optional[BoundingBox] = None
    id: Optional[int] = None

    def with_keypoints(self, keypoints: List[Keypoint]) -> "Pose":
        return replace(self, keypoints=list(keypoints))

    def copy(self) -> "Pose":
        return self.with_keypoints(self.keypoints)

    def keypoint(self, index: int) -> Optional[Keypoint]:
        if 0 <= index < len(self.keypoints):
            return self.keypoints[index]
        return None

    def confidence(self, index: int) -> float:
        kp = self.keypoint(index)
        return kp.confidence if kp is not None else 0.0
