from dataclasses import asdict
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from app.services.pose_stability_filter import StabilityFilterResult
from app.services.pose_topology import NUM_KEYPOINTS
from app.services.pose_types import BoundingBox, Keypoint, Pose
from app.services.stability_config import StabilityConfig


class KeypointSchema(BaseModel):
    x: float = Field(..., allow_inf_nan=False)
    y: float = Field(..., allow_inf_nan=False)
    score: Optional[float] = Field(None, ge=0.0, le=1.0)
    name: Optional[str] = None


class BoundingBoxSchema(BaseModel):
    x_min: float
    y_min: float
    width: float = Field(..., ge=0.0)
    height: float = Field(..., ge=0.0)
    score: Optional[float] = Field(None, ge=0.0, le=1.0)


class PoseSchema(BaseModel):
    keypoints: List[KeypointSchema] = Field(..., min_length=NUM_KEYPOINTS, max_length=NUM_KEYPOINTS)
    score: Optional[float] = None
    box: Optional[BoundingBoxSchema] = None
    id: Optional[int] = None

    def to_pose(self) -> Pose:
        return Pose(
            keypoints=[Keypoint(x=kp.x, y=kp.y, score=kp.score, name=kp.name) for kp in self.keypoints],
            score=self.score,
            box=BoundingBox(**self.box.model_dump()) if self.box else None,
            id=self.id,
        )

    @classmethod
    def from_pose(cls, pose: Pose) -> "PoseSchema":
        return cls(
            keypoints=[KeypointSchema(x=kp.x, y=kp.y, score=kp.score, name=kp.name) for kp in pose.keypoints],
            score=pose.score,
            box=BoundingBoxSchema(**asdict(pose.box)) if pose.box else None,
            id=pose.id,
        )


class StabilityConfigOverrides(BaseModel):
    """Per-session overrides; omitted fields keep the server defaults"""
    max_segment_change: Optional[float] = Field(None, gt=1.0)
    max_angle_change: Optional[float] = Field(None, gt=0.0, le=180.0)
    similarity_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    ratio_tolerance: Optional[float] = Field(None, gt=0.0)
    recovery_frames: Optional[int] = Field(None, ge=1)
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    enable_mirror_recovery: Optional[bool] = None
    enable_simulation: Optional[bool] = None
    mirror_only_mode: Optional[bool] = None
    simulation_decay: Optional[float] = Field(None, ge=0.0, le=1.0)
    smoothing_alpha: Optional[float] = Field(None, gt=0.0, le=1.0)


class StabilityConfigResponse(BaseModel):
    max_segment_change: float
    max_angle_change: float
    similarity_threshold: float
    ratio_tolerance: float
    recovery_frames: int
    min_confidence: float
    enable_mirror_recovery: bool
    enable_simulation: bool
    mirror_only_mode: bool
    simulation_decay: float
    smoothing_alpha: float

    @classmethod
    def from_config(cls, config: StabilityConfig) -> "StabilityConfigResponse":
        return cls(**config.to_dict())


class FrameRequest(BaseModel):
    frame_index: int = Field(..., ge=0)
    poses: List[PoseSchema] = []


class StabilizeRequest(BaseModel):
    frames: List[FrameRequest]
    fps: float = Field(30.0, gt=0.0)
    config: Optional[StabilityConfigOverrides] = None
    include_history: bool = False


class StabilityResultSchema(BaseModel):
    pose: PoseSchema
    state: str
    is_banana_frame: bool
    stable_count: int
    similarity: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def from_result(cls, result: StabilityFilterResult) -> "StabilityResultSchema":
        return cls(
            pose=PoseSchema.from_pose(result.pose),
            state=result.state.value,
            is_banana_frame=result.is_banana_frame,
            stable_count=result.stable_count,
            similarity=result.similarity,
            reason=result.reason,
        )


class FrameResultResponse(BaseModel):
    frame_index: int
    state: str
    results: List[StabilityResultSchema]


class StabilizeResponse(BaseModel):
    frames: List[FrameResultResponse]
    final_state: str
    frames_processed: int
    history: Optional[Dict[str, Any]] = None


class SessionCreateRequest(BaseModel):
    config: Optional[StabilityConfigOverrides] = None


class SessionResponse(BaseModel):
    session_id: str
    config: StabilityConfigResponse


class TrackSummary(BaseModel):
    pose_index: int
    state: str
    stable_count: int
    frame_count: int
    has_baseline: bool


class SessionSummary(BaseModel):
    session_id: str
    state: str
    frames_processed: int
    last_frame_index: Optional[int] = None
    tracks: List[TrackSummary]
    config: StabilityConfigResponse
