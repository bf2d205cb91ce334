"""Application configuration via environment variables and .env file."""

from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")


class _EnvFileSettings(BaseSettings):
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )


class Settings(_EnvFileSettings):
    model_config = {
        "env_prefix": "NETWATCH_",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Database
    db_path: Path = Path("./data/netwatch.db")

    # Logging
    log_level: str = "info"

    # Health prober
    prober_enabled: bool = True
    probe_interval: int = 10  # seconds between cycles
    probe_timeout: float = 2.0  # seconds per ICMP probe
    freshness_window: int = 600  # seconds an agent report suppresses probing
    max_concurrent_probes: int = 32

    # Reconciliation
    latency_threshold: int = 50  # ms delta that makes an unchanged status log-worthy

    # Audit log windows
    log_limit: int = 50
    downtime_feed_limit: int = 100

    # Live updates
    subscriber_queue_size: int = 100

    # Initial value of the stored simulation flag (first start only)
    simulation_mode: bool = False

    # Create demo devices when the registry is empty
    seed_demo_devices: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000


class AgentSettings(_EnvFileSettings):
    """Settings for the remote agent that reports from inside the monitored network."""

    model_config = {
        "env_prefix": "NETWATCH_AGENT_",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server_url: str = "http://localhost:8000"
    # Env: NETWATCH_AGENT_ADDRESSES="192.168.1.1,10.0.0.1"
    addresses: Annotated[list[str], NoDecode] = []
    interval: int = 10
    ping_timeout: float = 1.0
    log_level: str = "info"

    @field_validator("addresses", mode="before")
    @classmethod
    def parse_addresses(cls, v: object) -> list[str]:
        """Parse comma-separated string or list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        if isinstance(v, list):
            return [s for s in v if s]
        return []


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
