from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"
    log_level: str = "INFO"

    # In-memory stabilization sessions
    max_sessions: int = 64
    session_ttl_seconds: float = 1800.0

    # Stability filter defaults (empirically chosen for the 17-point layout)
    stability_max_segment_change: float = 1.25
    stability_max_angle_change: float = 25.0
    stability_similarity_threshold: float = 0.8
    stability_ratio_tolerance: float = 0.35
    stability_recovery_frames: int = 4
    stability_min_confidence: float = 0.3
    stability_enable_mirror_recovery: bool = True
    stability_enable_simulation: bool = False
    stability_mirror_only_mode: bool = False
    stability_simulation_decay: float = 0.9
    stability_smoothing_alpha: float = 0.7

    class Config:
        env_file = ".env"


settings = Settings()
