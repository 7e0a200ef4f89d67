"""
Tunable thresholds for the pose stability filter.

The defaults are empirically chosen for the 17-point layout and exposed so
deployments can tune them; a filter instance never changes its config.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class StabilityConfig:
    """Immutable per-filter configuration"""
    # Relative segment-length change tolerated between frames (1.25 = 25%)
    max_segment_change: float = 1.25
    # Elbow/knee angle change tolerated between frames, degrees
    max_angle_change: float = 25.0
    # Minimum whole-pose cosine similarity to the reference pose
    similarity_threshold: float = 0.8
    # Maximum deviation of body proportions from the track baseline
    ratio_tolerance: float = 0.35
    # Consecutive stable frames required to leave RECOVERY
    recovery_frames: int = 4
    # Minimum keypoint score for a joint to be trusted
    min_confidence: float = 0.3
    enable_mirror_recovery: bool = True
    enable_simulation: bool = False
    # Joint-loss handling and per-joint mirroring only, never freeze
    mirror_only_mode: bool = False
    simulation_decay: float = 0.9
    smoothing_alpha: float = 0.7

    @classmethod
    def from_settings(cls, settings: Any) -> "StabilityConfig":
        """Build the default config from application settings."""
        return cls(
            max_segment_change=settings.stability_max_segment_change,
            max_angle_change=settings.stability_max_angle_change,
            similarity_threshold=settings.stability_similarity_threshold,
            ratio_tolerance=settings.stability_ratio_tolerance,
            recovery_frames=settings.stability_recovery_frames,
            min_confidence=settings.stability_min_confidence,
            enable_mirror_recovery=settings.stability_enable_mirror_recovery,
            enable_simulation=settings.stability_enable_simulation,
            mirror_only_mode=settings.stability_mirror_only_mode,
            simulation_decay=settings.stability_simulation_decay,
            smoothing_alpha=settings.stability_smoothing_alpha,
        )

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "StabilityConfig":
        """Copy of this config with the non-None overrides applied."""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
