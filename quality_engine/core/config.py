"""Centralized configuration management for the quality engine."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Load .env file BEFORE any settings are read
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Application settings read from the environment."""

    APP_NAME: str = "Quality Evaluation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"

    def __init__(self):
        # =================================================================
        # APPLICATION
        # =================================================================
        self.ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
        self.DEBUG: bool = _bool("DEBUG", "false")

        # =================================================================
        # LOGGING
        # =================================================================
        self.LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FILE: str = os.getenv("LOG_FILE", "quality_engine.log")
        self.LOG_MAX_BYTES: int = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
        self.LOG_BACKUP_COUNT: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

        # =================================================================
        # DECISION THRESHOLDS
        # =================================================================
        self.ACCEPT_THRESHOLD: float = float(os.getenv("QE_ACCEPT_THRESHOLD", "0.85"))
        self.FIX_THRESHOLD: float = float(os.getenv("QE_FIX_THRESHOLD", "0.65"))
        self.REGENERATE_THRESHOLD: float = float(
            os.getenv("QE_REGENERATE_THRESHOLD", "0.50")
        )
        self.PASSING_THRESHOLD: float = float(os.getenv("QE_PASSING_THRESHOLD", "0.75"))

        # =================================================================
        # CONSENSUS & CASCADE
        # =================================================================
        self.VOTING_TOLERANCE: float = float(os.getenv("QE_VOTING_TOLERANCE", "0.15"))
        self.AGREEMENT_SPREAD: float = float(os.getenv("QE_AGREEMENT_SPREAD", "0.5"))
        self.BORDERLINE_MARGIN: float = float(os.getenv("QE_BORDERLINE_MARGIN", "0.05"))

        # =================================================================
        # EVALUATOR
        # =================================================================
        self.EVALUATOR_MODEL: str = os.getenv("QE_EVALUATOR_MODEL", "evaluator-large")
        self.FAST_EVALUATOR_MODEL: str = os.getenv(
            "QE_FAST_EVALUATOR_MODEL", "evaluator-fast"
        )
        self.EVALUATOR_TIMEOUT_SECONDS: float = float(
            os.getenv("QE_EVALUATOR_TIMEOUT_SECONDS", "60")
        )
        self.FAST_PASS_MAX_CHARS: int = int(os.getenv("QE_FAST_PASS_MAX_CHARS", "4000"))
        self.FULL_PASS_MAX_CHARS: int = int(os.getenv("QE_FULL_PASS_MAX_CHARS", "12000"))
        self.EVALUATOR_MAX_RETRIES: int = int(os.getenv("QE_EVALUATOR_MAX_RETRIES", "1"))

        # =================================================================
        # REFINEMENT
        # =================================================================
        self.MAX_REFINEMENT_ITERATIONS: int = int(
            os.getenv("QE_MAX_REFINEMENT_ITERATIONS", "2")
        )

        # =================================================================
        # STORAGE
        # =================================================================
        self.REVIEW_STORE: str = os.getenv("QE_REVIEW_STORE", "memory")  # memory | redis | sql
        self.REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.DATABASE_URL: str = os.getenv(
            "DATABASE_URL", "sqlite:///./quality_engine.db"
        )

    def engine_config(self):
        """
        Build the typed engine configuration.

        Raises:
            ConfigurationError: if any value is out of range or thresholds
            are misordered.
        """
        from ..services.evaluation.cascade import CascadeConfig
        from ..services.evaluation.consensus import VotingConfig
        from ..services.evaluation.decision import DecisionThresholds
        from ..services.evaluation.engine import EngineConfig
        from ..services.evaluation.gateway import EvaluationConfig
        from ..services.evaluation.refinement_pipeline import RefinementConfig

        return EngineConfig(
            thresholds=DecisionThresholds(
                accept=self.ACCEPT_THRESHOLD,
                fix=self.FIX_THRESHOLD,
                regenerate=self.REGENERATE_THRESHOLD,
            ),
            voting=VotingConfig(
                tolerance=self.VOTING_TOLERANCE,
                agreement_spread=self.AGREEMENT_SPREAD,
            ),
            cascade=CascadeConfig(
                borderline_margin=self.BORDERLINE_MARGIN,
                fast_pass=EvaluationConfig(
                    model=self.FAST_EVALUATOR_MODEL,
                    max_content_chars=self.FAST_PASS_MAX_CHARS,
                    timeout_seconds=min(self.EVALUATOR_TIMEOUT_SECONDS, 20.0),
                ),
                full_pass=EvaluationConfig(
                    model=self.EVALUATOR_MODEL,
                    max_content_chars=self.FULL_PASS_MAX_CHARS,
                    timeout_seconds=self.EVALUATOR_TIMEOUT_SECONDS,
                ),
            ),
            refinement=RefinementConfig(max_iterations=self.MAX_REFINEMENT_ITERATIONS),
            passing_threshold=self.PASSING_THRESHOLD,
            evaluator_max_retries=self.EVALUATOR_MAX_RETRIES,
        )

    def _validate_production_env(self, issues: list[str]) -> None:
        """Validate production environment settings."""
        if self.ENVIRONMENT != "production":
            return

        if self.REVIEW_STORE == "memory":
            issues.append("WARNING: in-memory review store in production")
        if self.REVIEW_STORE == "sql" and not os.getenv("DATABASE_URL"):
            issues.append("ERROR: DATABASE_URL not set (required in production)")
        if self.REVIEW_STORE == "redis" and not os.getenv("REDIS_URL"):
            issues.append("ERROR: REDIS_URL not set (required in production)")
        if self.DEBUG:
            issues.append("WARNING: DEBUG=true in production")

    def _validate_engine(self, issues: list[str]) -> None:
        if self.REVIEW_STORE not in ("memory", "redis", "sql"):
            issues.append(f"ERROR: unknown QE_REVIEW_STORE '{self.REVIEW_STORE}'")

        try:
            self.engine_config()
        except ConfigurationError as e:
            issues.append(f"ERROR: {e.detail}")

    def validate_required(self) -> list[str]:
        """
        Validate required configuration at startup.
        Returns list of warnings/errors.
        """
        issues: list[str] = []
        logger = logging.getLogger(__name__)

        self._validate_production_env(issues)
        self._validate_engine(issues)

        for issue in issues:
            log_method = logger.error if issue.startswith("ERROR") else logger.warning
            log_method(issue)

        return issues


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
