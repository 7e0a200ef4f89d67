"""
In-memory registry of stabilization sessions.

A session is one viewer or analysis job streaming frames of one video; it
owns a PoseStabilityFilter for the video's lifetime. Nothing is persisted:
sessions expire after an idle TTL and the least recently used one is
evicted when the registry is full.
"""

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from app.config import settings
from app.services.pose_stability_filter import PoseStabilityFilter, StabilityFilterResult
from app.services.pose_types import Pose
from app.services.stability_config import StabilityConfig

logger = structlog.get_logger()


class SessionNotFoundError(KeyError):
    """Raised when a session id is unknown or has expired"""


@dataclass
class StabilitySession:
    session_id: str
    filter: PoseStabilityFilter
    created_at: float
    last_used: float
    frames_processed: int = 0
    last_frame_index: Optional[int] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class StabilitySessionManager:
    """Creates, looks up and expires stabilization sessions"""

    def __init__(
        self,
        default_config: Optional[StabilityConfig] = None,
        max_sessions: int = 64,
        ttl_seconds: float = 1800.0,
        clock=time.monotonic,
    ):
        self.default_config = default_config or StabilityConfig()
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: "OrderedDict[str, StabilitySession]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, overrides: Optional[Dict[str, Any]] = None) -> StabilitySession:
        """Open a session whose filter uses the defaults plus `overrides`."""
        config = self.default_config.with_overrides(overrides)
        now = self._clock()
        session = StabilitySession(
            session_id=uuid.uuid4().hex,
            filter=PoseStabilityFilter(config),
            created_at=now,
            last_used=now,
        )

        with self._lock:
            self._expire(now)
            while len(self._sessions) >= self.max_sessions:
                evicted_id, _ = self._sessions.popitem(last=False)
                logger.info("Evicted least recently used session", session_id=evicted_id)
            self._sessions[session.session_id] = session

        logger.info("Stabilization session created", session_id=session.session_id)
        return session

    def get(self, session_id: str) -> StabilitySession:
        now = self._clock()
        with self._lock:
            self._expire(now)
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            session.last_used = now
            self._sessions.move_to_end(session_id)
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
        logger.info("Stabilization session deleted", session_id=session_id)

    def process_frame(
        self,
        session_id: str,
        poses: List[Pose],
        frame_index: Optional[int] = None,
    ) -> List[StabilityFilterResult]:
        """Feed one frame of detections to the session's filter."""
        session = self.get(session_id)
        with session.lock:
            if (
                frame_index is not None
                and session.last_frame_index is not None
                and frame_index <= session.last_frame_index
            ):
                # Detection quality degrades on out-of-order frames, it does not fail
                logger.warning(
                    "Out-of-order frame submitted",
                    session_id=session_id,
                    frame_index=frame_index,
                    last_frame_index=session.last_frame_index,
                )
            results = session.filter.process_poses(poses, frame_index=frame_index)
            session.frames_processed += 1
            if frame_index is not None:
                session.last_frame_index = frame_index
        return results

    def reset(self, session_id: str) -> StabilitySession:
        """Clear all track state of a session (e.g. a new video was loaded)."""
        session = self.get(session_id)
        with session.lock:
            session.filter.reset()
            session.frames_processed = 0
            session.last_frame_index = None
        return session

    def _expire(self, now: float) -> None:
        expired = [sid for sid, s in self._sessions.items() if now - s.last_used > self.ttl_seconds]
        for sid in expired:
            del self._sessions[sid]
            logger.info("Expired idle session", session_id=sid)


session_manager = StabilitySessionManager(
    default_config=StabilityConfig.from_settings(settings),
    max_sessions=settings.max_sessions,
    ttl_seconds=settings.session_ttl_seconds,
)


def get_session_manager() -> StabilitySessionManager:
    return session_manager
