"""CLI execution context.

Wraps the shared ``EngineConfig`` with command-line overrides and builds
the token budget tracker lazily, so a bad ``--model`` only fails the
commands that need a tracker.
"""

from typing import Optional

from context_engine.config import EngineConfig
from context_engine.core.token_budget import TokenBudgetTracker


class CLIContext:
    """Effective configuration for one CLI invocation."""

    def __init__(
        self,
        engine_config: Optional[EngineConfig] = None,
        model: Optional[str] = None,
    ):
        """Initialize CLI context.

        Args:
            engine_config: Loaded configuration (env/TOML/defaults).
            model: Model id override from ``--model``.
        """
        self.config = engine_config or EngineConfig()
        self._model_override = model
        self._tracker: Optional[TokenBudgetTracker] = None

    @property
    def tracker(self) -> TokenBudgetTracker:
        """Tracker with configured profiles and the effective model selected.

        Raises:
            ModelNotFoundError: If the effective model is not registered
        """
        if self._tracker is None:
            tracker = self.config.create_tracker()
            if self._model_override:
                tracker.set_current_model(self._model_override)
            self._tracker = tracker
        return self._tracker


def create_context(
    config_file: Optional[str] = None,
    model: Optional[str] = None,
) -> CLIContext:
    """Load configuration and build the CLI context."""
    return CLIContext(engine_config=EngineConfig.from_env(config_file), model=model)
