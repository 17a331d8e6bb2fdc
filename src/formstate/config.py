"""
Engine configuration.

FormEngineConfig is a frozen dataclass. Engines constructed without an
explicit config pick up the current default, which can be replaced globally
with set_default_config() or for a block of code with config_context().

Usage:
    with config_context(FormEngineConfig(history_limit=10)):
        engine = FormEngine(fields=[...])   # uses history_limit=10
"""
import contextvars
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, Optional

from formstate.enums import ValidationMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormEngineConfig:
    """Tunables for a FormEngine instance.

    Attributes:
        history_limit: Maximum number of undo entries kept.
        default_debounce: Seconds to wait before running an async validator
                          when the field declares no debounce of its own.
        validation_mode: Form-level mode that ValidationMode.INHERIT resolves to.
        record_history: Disable to skip undo bookkeeping entirely.
        persist_on_change: Save values through the persistence adapter after
                           every value-changing commit.
    """
    history_limit: int = 50
    default_debounce: float = 0.3
    validation_mode: ValidationMode = ValidationMode.ALWAYS
    record_history: bool = True
    persist_on_change: bool = True

    def __post_init__(self):
        if self.history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {self.history_limit}")
        if self.default_debounce < 0:
            raise ValueError(f"default_debounce must be >= 0, got {self.default_debounce}")
        if self.validation_mode is ValidationMode.INHERIT:
            raise ValueError("Form-level validation_mode cannot be INHERIT")


_default_config = FormEngineConfig()
_config_override: contextvars.ContextVar[Optional[FormEngineConfig]] = contextvars.ContextVar(
    'formstate_config_override', default=None
)


def set_default_config(config: FormEngineConfig) -> None:
    """Replace the process-wide default config."""
    global _default_config
    _default_config = config
    logger.debug(f"Default engine config set: {config}")


def get_default_config() -> FormEngineConfig:
    """Return the config a new engine would use right now.

    A config_context() override wins over the process-wide default.
    """
    override = _config_override.get()
    return override if override is not None else _default_config


@contextmanager
def config_context(config: FormEngineConfig) -> Generator[FormEngineConfig, None, None]:
    """Use config as the default for engines created inside the block."""
    token = _config_override.set(config)
    try:
        yield config
    finally:
        _config_override.reset(token)
