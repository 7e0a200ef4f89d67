import pytest
from fastapi.testclient import TestClient
from app.main import app
from app.services.pose_types import Keypoint, Pose
from app.services.stability_config import StabilityConfig
from app.services.stability_sessions import StabilitySessionManager, get_session_manager

# Upright, left/right symmetric skeleton centered on x=200
BASE_COORDS = [
    (200.0, 80.0),   # nose
    (210.0, 70.0),   # left eye
    (190.0, 70.0),   # right eye
    (220.0, 75.0),   # left ear
    (180.0, 75.0),   # right ear
    (250.0, 150.0),  # left shoulder
    (150.0, 150.0),  # right shoulder
    (270.0, 230.0),  # left elbow
    (130.0, 230.0),  # right elbow
    (280.0, 310.0),  # left wrist
    (120.0, 310.0),  # right wrist
    (235.0, 320.0),  # left hip
    (165.0, 320.0),  # right hip
    (240.0, 430.0),  # left knee
    (160.0, 430.0),  # right knee
    (245.0, 540.0),  # left ankle
    (155.0, 540.0),  # right ankle
]


def _make_pose(coords=None, score=0.9, scores=None, moved=None, scale=1.0, shift_x=0.0):
    coords = list(coords or BASE_COORDS)
    for idx, xy in (moved or {}).items():
        coords[idx] = xy
    keypoints = []
    for i, (x, y) in enumerate(coords):
        kp_score = scores.get(i, score) if scores else score
        keypoints.append(Keypoint(x=x * scale + shift_x, y=y * scale, score=kp_score))
    return Pose(keypoints=keypoints, score=0.9)


@pytest.fixture
def make_pose():
    return _make_pose


@pytest.fixture
def base_pose():
    return _make_pose()


@pytest.fixture
def occluded_pose():
    return _make_pose(score=0.1)


@pytest.fixture
def default_config():
    return StabilityConfig()


@pytest.fixture
def session_manager():
    return StabilitySessionManager(default_config=StabilityConfig(), max_sessions=4, ttl_seconds=60.0)


@pytest.fixture(scope="function")
def client(session_manager):
    app.dependency_overrides[get_session_manager] = lambda: session_manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def pose_payload():
    def build(score=0.9, moved=None):
        pose = _make_pose(score=score, moved=moved)
        return {"keypoints": [{"x": kp.x, "y": kp.y, "score": kp.score} for kp in pose.keypoints]}
    return build
