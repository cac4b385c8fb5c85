"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Redis/Cache
    redis_url: str = "redis://localhost:6379"

    # Database
    supabase_url: str = ""
    supabase_service_key: str = ""
    storage_backend: str = "supabase"  # supabase | memory

    # Vapi voice platform
    vapi_base_url: str = "https://api.vapi.ai"
    vapi_api_key: str = ""
    vapi_webhook_secret: str = ""
    vapi_timeout_seconds: float = 30.0

    # Call initiation rate limiting (per organization)
    rate_limit_backend: str = "memory"  # memory | redis
    call_rate_limit: int = 30
    call_rate_window_ms: int = 60_000

    # Reconciliation sweep
    sync_stale_after_seconds: int = 300
    sync_interval_seconds: int = 60
    sync_batch_size: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance"""
    return Settings()


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = None, config_dir: Path = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        # Load default config if exists
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Load environment-specific config
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        # Substitute environment variables
        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("plans.starter.minutes_per_month") -> 150
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value
