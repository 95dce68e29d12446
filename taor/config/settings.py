# taor/config/settings.py
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taor.agent.context.compression import (
    COMPACTION_OUTPUT_TOKEN_MAX,
    COMPACTION_TRIGGER_RATIO,
    MIN_TOKEN_THRESHOLD,
    PRUNE_MINIMUM,
    PRUNE_PROTECT_THRESHOLD,
    PRUNE_PROTECT_TURNS,
    PRUNE_PROTECTED_TOOLS,
    CompressionConfig,
)
from taor.exceptions.config import ConfigError
from taor.protocol.transport import MAX_BUFFER_SIZE

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # === Logging ===
    log_level: str = "INFO"

    # === Loop ===
    max_turns: int = 50
    error_retry_turns: int = 10
    retry_base_delay: float = 1.0
    retry_poll_interval: float = 0.1

    # === Compression ===
    auto_compact: bool = True
    compaction_trigger_ratio: float = COMPACTION_TRIGGER_RATIO
    compaction_output_token_max: int = COMPACTION_OUTPUT_TOKEN_MAX
    pruning_enabled: bool = True
    prune_protect_threshold: int = PRUNE_PROTECT_THRESHOLD
    prune_minimum: int = PRUNE_MINIMUM
    prune_protect_turns: int = PRUNE_PROTECT_TURNS
    prune_protected_tools: List[str] = Field(default_factory=lambda: list(PRUNE_PROTECTED_TOOLS))
    min_token_threshold: int = MIN_TOKEN_THRESHOLD

    # === Bus ===
    bus_buffer_size: int = MAX_BUFFER_SIZE
    bus_request_timeout: float = 0  # 0 = wait forever

    # === Tools / persistence ===
    tool_description_limit: int = 0  # 0 = no truncation
    transcript_dir: Optional[Path] = None

    # === Pydantic V2 Configuration ===
    model_config = SettingsConfigDict(
        env_prefix="TAOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_and_compute(self) -> "Settings":
        """Validate ranges and normalize derived fields."""

        # 1. Validate log level
        if self.log_level.upper() not in logging._nameToLevel:
            raise ConfigError(
                f"Invalid log level: {self.log_level}",
                field_name="log_level",
                invalid_value=self.log_level,
            )
        self.log_level = self.log_level.upper()

        # 2. Validate the compaction trigger
        if not 0 < self.compaction_trigger_ratio <= 1:
            raise ConfigError(
                "compaction_trigger_ratio must be in (0, 1]",
                field_name="compaction_trigger_ratio",
                invalid_value=self.compaction_trigger_ratio,
            )

        # 3. Validate counters
        for name in ("max_turns", "error_retry_turns", "prune_protect_turns", "bus_buffer_size"):
            value = getattr(self, name)
            if value < 0:
                raise ConfigError(
                    f"{name} must not be negative", field_name=name, invalid_value=value
                )

        if self.retry_poll_interval <= 0:
            raise ConfigError(
                "retry_poll_interval must be positive",
                field_name="retry_poll_interval",
                invalid_value=self.retry_poll_interval,
            )

        return self

    @property
    def request_timeout(self) -> Optional[float]:
        return self.bus_request_timeout or None

    def compression_config(self) -> CompressionConfig:
        return CompressionConfig(
            auto=self.auto_compact,
            output_token_max=self.compaction_output_token_max,
            trigger_ratio=self.compaction_trigger_ratio,
            enabled=self.pruning_enabled,
            protect_threshold=self.prune_protect_threshold,
            minimum_prune=self.prune_minimum,
            protected_tools=tuple(self.prune_protected_tools),
            protect_turns=self.prune_protect_turns,
            min_token_threshold=self.min_token_threshold,
        )


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment, `.env` and keyword overrides.

    Raises:
        ConfigError: A value is missing, malformed or out of range.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field_name = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ConfigError(
            f"Invalid configuration: {e}",
            field_name=field_name,
            invalid_value=first.get("input"),
        ) from e
    logger.debug("Settings loaded: %s", settings.model_dump())
    return settings
