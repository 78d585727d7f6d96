"""
Engine configuration for context-engine.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (context-engine.toml)
3. Default values (lowest priority)

Environment variables:
- CONTEXT_ENGINE_CONFIG_FILE: Path to TOML config file
- CONTEXT_ENGINE_DEFAULT_MODEL: Model id selected on tracker creation
- CONTEXT_ENGINE_WARNING_THRESHOLD: Budget percent that raises a WARNING
- CONTEXT_ENGINE_CRITICAL_THRESHOLD: Budget percent that raises a CRITICAL warning
- CONTEXT_ENGINE_INPUT_BUFFER_PERCENT: Safety margin removed from available input
- CONTEXT_ENGINE_RECENT_HISTORY: Conversation entries treated as recent history
- CONTEXT_ENGINE_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- CONTEXT_ENGINE_STRUCTURED_LOGGING: JSON log lines (true/false)

Example context-engine.toml:

    [budget]
    default_model = "local/llama-8b"
    warning_threshold_percent = 70

    [[models]]
    id = "local/llama-8b"
    name = "Llama 8B"
    context_window_tokens = 8192
    max_output_tokens = 1024
    chars_per_token = { code = 3.0, natural_text = 3.9 }
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from context_engine.core.feeder import DEFAULT_RECENT_HISTORY_MESSAGES
from context_engine.core.logging_config import configure_logging
from context_engine.core.token_budget import (
    DEFAULT_CRITICAL_THRESHOLD_PERCENT,
    DEFAULT_MODEL_PROFILE,
    DEFAULT_WARNING_THRESHOLD_PERCENT,
    ModelProfile,
    TokenBudgetTracker,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("context-engine.toml", ".context-engine.toml")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


@dataclass
class BudgetSettings:
    """Model selection and budget thresholds."""

    default_model: str = DEFAULT_MODEL_PROFILE.id
    warning_threshold_percent: float = DEFAULT_WARNING_THRESHOLD_PERCENT
    critical_threshold_percent: float = DEFAULT_CRITICAL_THRESHOLD_PERCENT
    input_buffer_percent: float = 0.0

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "BudgetSettings":
        """Create settings from the [budget] table."""
        return cls(
            default_model=str(data.get("default_model", DEFAULT_MODEL_PROFILE.id)),
            warning_threshold_percent=float(
                data.get("warning_threshold_percent", DEFAULT_WARNING_THRESHOLD_PERCENT)
            ),
            critical_threshold_percent=float(
                data.get("critical_threshold_percent", DEFAULT_CRITICAL_THRESHOLD_PERCENT)
            ),
            input_buffer_percent=float(data.get("input_buffer_percent", 0.0)),
        )


@dataclass
class FeederSettings:
    """Context feeder tuning."""

    recent_history_messages: int = DEFAULT_RECENT_HISTORY_MESSAGES

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "FeederSettings":
        return cls(
            recent_history_messages=int(
                data.get("recent_history_messages", DEFAULT_RECENT_HISTORY_MESSAGES)
            )
        )


@dataclass
class LoggingSettings:
    level: str = "INFO"
    structured: bool = True


@dataclass
class EngineConfig:
    """Engine configuration with support for env vars and TOML overrides."""

    budget: BudgetSettings = field(default_factory=BudgetSettings)
    feeder: FeederSettings = field(default_factory=FeederSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    # Extra profiles registered on every tracker, in addition to the default
    models: List[ModelProfile] = field(default_factory=list)

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "EngineConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get("CONTEXT_ENGINE_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            for default_path in DEFAULT_CONFIG_FILES:
                if Path(default_path).exists():
                    config._load_toml(Path(default_path))
                    break

        config._load_env()
        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file.

        A missing or malformed file is logged and leaves the defaults in place.
        """
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return

        try:
            if "budget" in data:
                self.budget = BudgetSettings.from_toml_dict(data["budget"])

            if "feeder" in data:
                self.feeder = FeederSettings.from_toml_dict(data["feeder"])

            if "logging" in data:
                log = data["logging"]
                if "level" in log:
                    self.logging.level = str(log["level"]).upper()
                if "structured" in log:
                    self.logging.structured = _parse_bool(log["structured"])

            if "models" in data:
                self.models = [ModelProfile.from_dict(m) for m in data["models"]]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid value in config file {path}: {e}")

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if model := os.environ.get("CONTEXT_ENGINE_DEFAULT_MODEL"):
            self.budget.default_model = model

        if warning := os.environ.get("CONTEXT_ENGINE_WARNING_THRESHOLD"):
            try:
                self.budget.warning_threshold_percent = float(warning)
            except ValueError:
                logger.warning(f"Ignoring invalid CONTEXT_ENGINE_WARNING_THRESHOLD: {warning}")

        if critical := os.environ.get("CONTEXT_ENGINE_CRITICAL_THRESHOLD"):
            try:
                self.budget.critical_threshold_percent = float(critical)
            except ValueError:
                logger.warning(f"Ignoring invalid CONTEXT_ENGINE_CRITICAL_THRESHOLD: {critical}")

        if buffer := os.environ.get("CONTEXT_ENGINE_INPUT_BUFFER_PERCENT"):
            try:
                self.budget.input_buffer_percent = float(buffer)
            except ValueError:
                logger.warning(f"Ignoring invalid CONTEXT_ENGINE_INPUT_BUFFER_PERCENT: {buffer}")

        if recent := os.environ.get("CONTEXT_ENGINE_RECENT_HISTORY"):
            try:
                self.feeder.recent_history_messages = int(recent)
            except ValueError:
                logger.warning(f"Ignoring invalid CONTEXT_ENGINE_RECENT_HISTORY: {recent}")

        if level := os.environ.get("CONTEXT_ENGINE_LOG_LEVEL"):
            self.logging.level = level.upper()

        if structured := os.environ.get("CONTEXT_ENGINE_STRUCTURED_LOGGING"):
            self.logging.structured = _parse_bool(structured)

    def create_tracker(self, **kwargs: Any) -> TokenBudgetTracker:
        """Build a tracker with every configured profile and the default model selected.

        Raises:
            ModelNotFoundError: If ``budget.default_model`` names no known profile
        """
        tracker = TokenBudgetTracker(
            warning_threshold_percent=self.budget.warning_threshold_percent,
            critical_threshold_percent=self.budget.critical_threshold_percent,
            input_buffer_percent=self.budget.input_buffer_percent,
            **kwargs,
        )
        for profile in self.models:
            tracker.register_model(profile)
        tracker.set_current_model(self.budget.default_model)
        return tracker

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(
            level=self.logging.level,
            format="structured" if self.logging.structured else "human",
        )


# Global configuration instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: EngineConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
