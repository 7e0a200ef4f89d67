from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException
from typing import Dict
from app.schemas.stability import (
    FrameRequest,
    FrameResultResponse,
    SessionCreateRequest,
    SessionResponse,
    SessionSummary,
    StabilityConfigResponse,
    StabilityResultSchema,
    StabilizeRequest,
    StabilizeResponse,
    TrackSummary,
)
from app.services.joint_history import JointHistoryTracker
from app.services.pose_stability_filter import PoseStabilityFilter
from app.services.stability_sessions import (
    SessionNotFoundError,
    StabilitySession,
    StabilitySessionManager,
    get_session_manager,
)
import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/stability", tags=["stability"])


def _overrides(config) -> Dict:
    return config.model_dump(exclude_none=True) if config else {}


def _session_not_found(session_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Session {session_id} not found")


def _summarize(session: StabilitySession) -> SessionSummary:
    stability_filter = session.filter
    tracks = []
    for pose_index in range(stability_filter.track_count):
        track = stability_filter.get_track_state(pose_index)
        if track is None:
            continue
        tracks.append(TrackSummary(
            pose_index=pose_index,
            state=track.current_state.value,
            stable_count=track.stable_count,
            frame_count=track.frame_count,
            has_baseline=track.baseline_ratios is not None,
        ))

    return SessionSummary(
        session_id=session.session_id,
        state=stability_filter.get_state().value,
        frames_processed=session.frames_processed,
        last_frame_index=session.last_frame_index,
        tracks=tracks,
        config=StabilityConfigResponse.from_config(stability_filter.config),
    )


@router.get("/config/defaults", response_model=StabilityConfigResponse)
async def get_default_config(manager: StabilitySessionManager = Depends(get_session_manager)):
    """Default filter thresholds applied when a request does not override them."""
    return StabilityConfigResponse.from_config(manager.default_config)


@router.post("/stabilize", response_model=StabilizeResponse)
def stabilize_sequence(
    request: StabilizeRequest,
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    """
    Stabilize a complete pose sequence with a fresh filter.

    Args:
        request: Frames in temporal order, optional config overrides and fps

    Returns:
        Corrected poses and diagnostics for every frame, plus the relative
        joint history of each slot when requested
    """
    try:
        config = manager.default_config.with_overrides(_overrides(request.config))
        stability_filter = PoseStabilityFilter(config)
        trackers: Dict[int, JointHistoryTracker] = {}

        frames = []
        for frame in request.frames:
            results = stability_filter.process_poses(
                [pose.to_pose() for pose in frame.poses],
                frame_index=frame.frame_index,
            )
            if request.include_history:
                for pose_index, result in enumerate(results):
                    tracker = trackers.setdefault(
                        pose_index,
                        JointHistoryTracker(fps=request.fps, min_confidence=config.min_confidence),
                    )
                    tracker.record(result.pose, frame.frame_index, is_banana=result.is_banana_frame)

            frames.append(FrameResultResponse(
                frame_index=frame.frame_index,
                state=stability_filter.get_state().value,
                results=[StabilityResultSchema.from_result(r) for r in results],
            ))

        banana_frames = sum(1 for f in frames if any(r.is_banana_frame for r in f.results))
        logger.info(
            "Stabilized pose sequence",
            frames=len(frames),
            banana_frames=banana_frames,
            final_state=stability_filter.get_state().value,
        )

        history = None
        if request.include_history:
            history = {str(idx): asdict(tracker.history()) for idx, tracker in trackers.items()}

        return StabilizeResponse(
            frames=frames,
            final_state=stability_filter.get_state().value,
            frames_processed=len(frames),
            history=history,
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to stabilize pose sequence", error=str(e), frames=len(request.frames))
        raise HTTPException(
            status_code=500,
            detail=f"Failed to stabilize pose sequence: {str(e)}"
        )


@router.post("/sessions", response_model=SessionResponse)
async def create_session(
    request: SessionCreateRequest = SessionCreateRequest(),
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    """Open a streaming session; its filter keeps per-track state between frames."""
    session = manager.create(_overrides(request.config))
    return SessionResponse(
        session_id=session.session_id,
        config=StabilityConfigResponse.from_config(session.filter.config),
    )


@router.get("/sessions/{session_id}", response_model=SessionSummary)
async def get_session(
    session_id: str,
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    try:
        return _summarize(manager.get(session_id))
    except SessionNotFoundError:
        raise _session_not_found(session_id)


@router.post("/sessions/{session_id}/frames", response_model=FrameResultResponse)
def process_session_frame(
    session_id: str,
    frame: FrameRequest,
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    """
    Process one frame of detections for a streaming session.

    Args:
        session_id: Session returned by POST /stability/sessions
        frame: Frame index and the poses detected in it (pose i -> slot i)

    Returns:
        Corrected poses, per-pose diagnostics and the session's overall state
    """
    try:
        results = manager.process_frame(
            session_id,
            [pose.to_pose() for pose in frame.poses],
            frame_index=frame.frame_index,
        )
        session = manager.get(session_id)
        return FrameResultResponse(
            frame_index=frame.frame_index,
            state=session.filter.get_state().value,
            results=[StabilityResultSchema.from_result(r) for r in results],
        )

    except SessionNotFoundError:
        raise _session_not_found(session_id)
    except Exception as e:
        logger.error(
            "Failed to process frame",
            error=str(e),
            session_id=session_id,
            frame_index=frame.frame_index
        )
        raise HTTPException(
            status_code=500,
            detail=f"Failed to process frame: {str(e)}"
        )


@router.post("/sessions/{session_id}/reset", response_model=SessionSummary)
def reset_session(
    session_id: str,
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    """Clear every track of the session, e.g. when a new video is loaded."""
    try:
        return _summarize(manager.reset(session_id))
    except SessionNotFoundError:
        raise _session_not_found(session_id)


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    manager: StabilitySessionManager = Depends(get_session_manager),
):
    try:
        manager.delete(session_id)
    except SessionNotFoundError:
        raise _session_not_found(session_id)
    return {"session_id": session_id, "status": "deleted"}
