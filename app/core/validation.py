"""
Configuration Validation Module
Checks database, voice platform, rate limit and sweep settings on startup
"""
import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("supabase", "memory")
RATE_LIMIT_BACKENDS = ("memory", "redis")


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""
    provider: str
    setting: str
    is_valid: bool
    message: str
    optional: bool = False


class ProviderValidator:
    """
    Validates the loaded Settings before the API starts accepting requests.

    Errors always fail validation. Warnings fail it only in strict mode, and
    never when they concern an optional setting.
    """

    def __init__(self, settings: Optional[Settings] = None, strict: bool = False):
        """
        Initialize validator.

        Args:
            settings: Settings to check (default: the cached application settings)
            strict: If True, treat warnings as errors
        """
        self.settings = settings or get_settings()
        self.strict = strict
        self.results: List[ValidationResult] = []

    def validate_all(self) -> Tuple[bool, List[ValidationResult]]:
        """
        Validate every configuration group.

        Returns:
            Tuple of (all_valid, list of results)
        """
        self.results = []

        self._validate_voice()
        self._validate_database()
        self._validate_rate_limit()
        self._validate_sweep()

        errors = [r for r in self.results if not r.is_valid and not r.optional]
        return len(errors) == 0, self.results

    def _validate_voice(self) -> None:
        s = self.settings

        if s.vapi_api_key:
            self._add_success("voice", "VAPI_API_KEY", "Vapi voice platform configured")
        else:
            self._add_error("voice", "VAPI_API_KEY", "Vapi voice platform requires VAPI_API_KEY to be set")

        if not s.vapi_base_url.startswith("https://"):
            self._add_error("voice", "VAPI_BASE_URL", f"Vapi base URL must use https (got {s.vapi_base_url})")

        if s.vapi_webhook_secret:
            self._add_success("voice", "VAPI_WEBHOOK_SECRET", "Vapi webhook signatures will be verified")
        else:
            self._add_warning(
                "voice", "VAPI_WEBHOOK_SECRET",
                "Vapi webhook secret not configured, signatures will not be verified",
                optional=True,
            )

    def _validate_database(self) -> None:
        s = self.settings

        if s.storage_backend not in STORAGE_BACKENDS:
            self._add_error(
                "database", "STORAGE_BACKEND",
                f"Unknown storage backend '{s.storage_backend}' (expected one of {', '.join(STORAGE_BACKENDS)})",
            )
            return

        if s.storage_backend == "memory":
            self._add_warning(
                "database", "STORAGE_BACKEND",
                "In-memory storage: call records are lost on restart",
                optional=s.environment != "production",
            )
            return

        for env_var, value in (("SUPABASE_URL", s.supabase_url), ("SUPABASE_SERVICE_KEY", s.supabase_service_key)):
            if value:
                self._add_success("database", env_var, "Supabase database configured")
            else:
                self._add_error("database", env_var, f"Supabase database requires {env_var} to be set")

    def _validate_rate_limit(self) -> None:
        s = self.settings

        if s.rate_limit_backend not in RATE_LIMIT_BACKENDS:
            self._add_error(
                "rate_limit", "RATE_LIMIT_BACKEND",
                f"Unknown rate limit backend '{s.rate_limit_backend}' "
                f"(expected one of {', '.join(RATE_LIMIT_BACKENDS)})",
            )
        elif s.rate_limit_backend == "redis":
            if s.redis_url:
                self._add_success("rate_limit", "REDIS_URL", "Redis rate limit store configured")
            else:
                self._add_error("rate_limit", "REDIS_URL", "Redis rate limit store requires REDIS_URL to be set")
        else:
            self._add_warning(
                "rate_limit", "RATE_LIMIT_BACKEND",
                "Per-process rate limit counters; use redis when running more than one API process",
                optional=True,
            )

        if s.call_rate_limit <= 0 or s.call_rate_window_ms <= 0:
            self._add_error("rate_limit", "CALL_RATE_LIMIT", "Call rate limit and window must be positive")

    def _validate_sweep(self) -> None:
        s = self.settings

        for env_var, value in (
            ("SYNC_STALE_AFTER_SECONDS", s.sync_stale_after_seconds),
            ("SYNC_INTERVAL_SECONDS", s.sync_interval_seconds),
            ("SYNC_BATCH_SIZE", s.sync_batch_size),
        ):
            if value <= 0:
                self._add_error("sync", env_var, f"{env_var} must be positive (got {value})")

    def _add_success(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, True, message))

    def _add_error(self, provider: str, setting: str, message: str):
        self.results.append(ValidationResult(provider, setting, False, message))

    def _add_warning(self, provider: str, setting: str, message: str, optional: bool = False):
        self.results.append(ValidationResult(
            provider=provider,
            setting=setting,
            is_valid=not self.strict,  # Warnings become errors in strict mode
            message=f"WARNING: {message}",
            optional=optional,
        ))

    def log_results(self):
        """Log all validation results."""
        errors = [r for r in self.results if not r.is_valid and not r.optional]
        warnings = [r for r in self.results if "WARNING" in r.message and r not in errors]
        successes = [r for r in self.results if r.is_valid and "WARNING" not in r.message]

        if successes:
            logger.info("Configuration validated:")
            for r in successes:
                logger.info(f"  ✓ [{r.provider}] {r.message}")

        for r in warnings:
            logger.warning(f"  ⚠ [{r.provider}] {r.message}")

        if errors:
            logger.error("Configuration errors:")
            for r in errors:
                logger.error(f"  ✗ [{r.provider}] {r.message}")

    def get_error_summary(self) -> Optional[str]:
        """Get summary of errors for exception message."""
        errors = [r for r in self.results if not r.is_valid and not r.optional]
        if not errors:
            return None

        lines = ["Configuration errors:"]
        for r in errors:
            lines.append(f"  - {r.setting}: {r.message}")
        return "\n".join(lines)


def validate_providers_on_startup(strict: bool = False, settings: Optional[Settings] = None) -> None:
    """
    Validate configuration at startup.

    Called from the FastAPI lifespan.

    Raises:
        RuntimeError: If required configuration is missing or invalid
    """
    validator = ProviderValidator(settings=settings, strict=strict)
    all_valid, _ = validator.validate_all()
    validator.log_results()

    if not all_valid:
        raise RuntimeError(validator.get_error_summary())

    logger.info("All configuration validated successfully")
