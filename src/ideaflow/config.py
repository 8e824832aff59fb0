"""ideaflow configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class Config:
    """ideaflow configuration."""

    home_path: Path = field(default_factory=lambda: Path.home() / ".ideaflow")
    log_level: str = "INFO"
    wal_mode: bool = True

    # Rejection feedback bounds (characters, after trimming)
    feedback_min_length: int = 20
    feedback_max_length: int = 500

    # Refinement prompt bounds
    refinement_min_length: int = 10
    refinement_max_length: int = 500

    # Generation polling
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int = 60

    # AI generation service
    ai_service_url: str = "http://localhost:8787"
    ai_service_timeout_seconds: float = 30.0

    # Admin views
    recent_submissions_limit: int = 10
    idea_list_limit: int = 50

    jwt_secret: str = "test-secret-key-do-not-use"

    @classmethod
    def load(cls, home_path: Path | None = None) -> Config:
        """Load config from YAML file, env vars, then defaults."""
        config = cls()

        if home_path:
            config.home_path = home_path

        # Override from env
        env_path = os.environ.get("IDEAFLOW_HOME")
        if env_path:
            config.home_path = Path(env_path)

        env_log = os.environ.get("IDEAFLOW_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        env_ai = os.environ.get("IDEAFLOW_AI_URL")
        if env_ai:
            config.ai_service_url = env_ai

        env_secret = os.environ.get("IDEAFLOW_JWT_SECRET")
        if env_secret:
            config.jwt_secret = env_secret

        # Load YAML config if exists
        config_file = config.home_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if hasattr(config, key):
                    expected_type = type(getattr(config, key))
                    if expected_type is Path:
                        setattr(config, key, Path(value))
                    else:
                        setattr(config, key, expected_type(value))

        return config

    @property
    def db_path(self) -> Path:
        return self.home_path / "ideaflow.db"

    def save(self) -> None:
        """Save current config to YAML."""
        self.home_path.mkdir(parents=True, exist_ok=True)
        config_file = self.home_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "wal_mode": self.wal_mode,
            "feedback_min_length": self.feedback_min_length,
            "feedback_max_length": self.feedback_max_length,
            "refinement_min_length": self.refinement_min_length,
            "refinement_max_length": self.refinement_max_length,
            "poll_interval_seconds": self.poll_interval_seconds,
            "poll_max_attempts": self.poll_max_attempts,
            "ai_service_url": self.ai_service_url,
            "ai_service_timeout_seconds": self.ai_service_timeout_seconds,
            "recent_submissions_limit": self.recent_submissions_limit,
            "idea_list_limit": self.idea_list_limit,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
