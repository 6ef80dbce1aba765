"""
Startup Validation Module

Checks the application configuration before serving requests:
required settings, secret strength, database and Redis reachability, and which
optional features are active or degraded. The report is logged; critical
failures abort startup in production.
"""

import sys
import logging
from typing import Dict, List, Optional, Any, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

import redis
from sqlalchemy import text

logger = logging.getLogger(__name__)

SECRET_MIN_LENGTH = 32


@dataclass
class ValidationResult:
    """Result of a validation check."""
    name: str
    passed: bool
    message: str
    severity: str = "error"  # error, warning, info
    remediation: Optional[str] = None


@dataclass
class StartupReport:
    """Startup validation report."""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    environment: str = "development"
    validations: List[ValidationResult] = field(default_factory=list)
    features_loaded: List[str] = field(default_factory=list)
    features_degraded: List[str] = field(default_factory=list)
    ready: bool = False

    def add_validation(self, result: ValidationResult):
        self.validations.append(result)

    def add_feature_loaded(self, name: str):
        self.features_loaded.append(name)

    def add_feature_degraded(self, name: str, reason: str):
        self.features_degraded.append(f"{name}: {reason}")

    def has_critical_failures(self) -> bool:
        return any(v.severity == "error" and not v.passed for v in self.validations)

    def get(self, name: str) -> Optional[ValidationResult]:
        return next((v for v in self.validations if v.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "environment": self.environment,
            "ready": self.ready,
            "validations": [
                {
                    "name": v.name,
                    "passed": v.passed,
                    "message": v.message,
                    "severity": v.severity,
                    "remediation": v.remediation
                }
                for v in self.validations
            ],
            "features": {
                "loaded": self.features_loaded,
                "degraded": self.features_degraded
            },
            "summary": {
                "total_validations": len(self.validations),
                "passed": sum(1 for v in self.validations if v.passed),
                "failed": sum(1 for v in self.validations if not v.passed),
            }
        }


class StartupValidator:
    """
    Validates a Flask config mapping.

    Args:
        config: app.config (or any mapping with the same keys)
        engine: SQLAlchemy engine to probe; skipped when None
    """

    # Required settings and what they are for
    REQUIRED_SETTINGS = [
        ("SECRET_KEY", "SESSION_SECRET", "Signs bearer tokens - CRITICAL for security"),
        ("SQLALCHEMY_DATABASE_URI", "DATABASE_URL", "Task and user storage"),
    ]

    def __init__(self, config: Mapping[str, Any], engine=None):
        self.config = config
        self.engine = engine
        self.report = StartupReport(environment=config.get("ENVIRONMENT") or "development")

    def is_production(self) -> bool:
        return self.report.environment == "production"

    def validate_required_settings(self) -> None:
        """Check all required settings are present."""
        for key, env_var, description in self.REQUIRED_SETTINGS:
            if self.config.get(key):
                self.report.add_validation(ValidationResult(
                    name=f"config:{key}",
                    passed=True,
                    message=f"{key} is configured",
                ))
            else:
                self.report.add_validation(ValidationResult(
                    name=f"config:{key}",
                    passed=False,
                    message=f"Missing required: {key}",
                    remediation=f"Set {env_var}. {description}"
                ))

    def validate_secret_key_strength(self) -> None:
        """Bearer tokens are only as strong as the signing secret."""
        secret = self.config.get("SECRET_KEY") or ""
        if not secret:
            return

        if len(secret) < SECRET_MIN_LENGTH:
            self.report.add_validation(ValidationResult(
                name="security:secret_key",
                passed=not self.is_production(),
                message=f"SESSION_SECRET too short ({len(secret)} chars, need {SECRET_MIN_LENGTH}+)",
                severity="error" if self.is_production() else "warning",
                remediation=f"Use at least {SECRET_MIN_LENGTH} random characters for SESSION_SECRET"
            ))
        else:
            self.report.add_validation(ValidationResult(
                name="security:secret_key",
                passed=True,
                message="SESSION_SECRET meets length requirements",
            ))

    def validate_database_connection(self) -> None:
        """Test database connectivity."""
        if self.engine is None:
            return
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.report.add_validation(ValidationResult(
                name="db:connection",
                passed=True,
                message="Database connection successful",
            ))
        except Exception as e:
            self.report.add_validation(ValidationResult(
                name="db:connection",
                passed=False,
                message=f"Database connection failed: {str(e)[:100]}",
                remediation="Check DATABASE_URL and ensure the database is reachable"
            ))

    def validate_message_queue(self) -> None:
        """Redis message queue for multi-worker real-time fan-out (optional)."""
        redis_url = self.config.get("SOCKETIO_MESSAGE_QUEUE")
        if not redis_url:
            self.report.add_validation(ValidationResult(
                name="redis:message_queue",
                passed=True,
                message="Redis not configured - real-time fan-out limited to one worker",
                severity="info"
            ))
            self.report.add_feature_degraded("realtime_multi_worker", "REDIS_URL not set")
            return

        try:
            r = redis.from_url(redis_url, socket_connect_timeout=5)
            r.ping()
            self.report.add_validation(ValidationResult(
                name="redis:message_queue",
                passed=True,
                message="Redis connection successful",
                severity="warning"
            ))
            self.report.add_feature_loaded("realtime_multi_worker")
        except Exception as e:
            self.report.add_validation(ValidationResult(
                name="redis:message_queue",
                passed=False,
                message=f"Redis connection failed: {str(e)[:100]}",
                severity="warning",
                remediation="Check REDIS_URL or remove it to run a single worker"
            ))
            self.report.add_feature_degraded("realtime_multi_worker", "Redis unreachable")

    def validate_google_oauth(self) -> None:
        if self.config.get("GOOGLE_OAUTH_CLIENT_ID") and self.config.get("GOOGLE_OAUTH_CLIENT_SECRET"):
            self.report.add_feature_loaded("google_oauth")
        else:
            self.report.add_feature_degraded(
                "google_oauth", "GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET are required"
            )

    def run_all_validations(self) -> StartupReport:
        """Run all validation checks and return the report."""
        logger.info("=" * 60)
        logger.info("STARTUP VALIDATION")
        logger.info(f"Environment: {self.report.environment}")

        self.validate_required_settings()
        self.validate_secret_key_strength()
        self.validate_database_connection()
        self.validate_message_queue()
        self.validate_google_oauth()

        self.report.ready = not self.report.has_critical_failures()

        summary = self.report.to_dict()["summary"]
        logger.info(f"Validations: {summary['passed']}/{summary['total_validations']} passed")
        for degraded in self.report.features_degraded:
            logger.warning(f"Degraded: {degraded}")

        if not self.report.ready:
            for v in self.report.validations:
                if not v.passed and v.severity == "error":
                    logger.error(f"  - {v.name}: {v.message}")
                    if v.remediation:
                        logger.error(f"    Fix: {v.remediation}")

        logger.info("=" * 60)
        return self.report

    def fail_if_not_ready(self) -> None:
        """
        Fail fast if critical validations fail in production.

        In development, log warnings but continue.
        """
        if not self.report.ready:
            if self.is_production():
                logger.critical("Application cannot start - critical configuration missing")
                sys.exit(1)
            else:
                logger.warning("Continuing despite validation failures (not production)")


def run_startup_validation(config: Mapping[str, Any], engine=None) -> StartupReport:
    """
    Run startup validation for an app's config.

    Call this at application startup before serving requests.
    """
    validator = StartupValidator(config, engine)
    report = validator.run_all_validations()
    validator.fail_if_not_ready()
    return report
