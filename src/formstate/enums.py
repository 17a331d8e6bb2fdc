"""
Enumerations shared by the form engine.

ValidationMode decides when a field is validated automatically,
ResetStrategy decides what a reset writes back, and InitialValueStrategy
decides which initial value wins when a field is registered more than once.
"""
from enum import Enum


class ValidationMode(Enum):
    """When a field is validated as part of a batch update."""
    ALWAYS = "always"
    ON_USER_INTERACTION = "on_user_interaction"
    ON_BLUR = "on_blur"
    DISABLED = "disabled"
    INHERIT = "inherit"  # Resolved against FormEngineConfig.validation_mode


class ResetStrategy(Enum):
    """What a reset writes back into the values map."""
    INITIAL_VALUES = "initial_values"
    EMPTY = "empty"


class InitialValueStrategy(Enum):
    """Which initial value wins when a key is registered again.

    PREFER_LOCAL: the most recently registered definition's initial value
                  replaces the recorded one.
    PREFER_GLOBAL: the first recorded initial value (usually the one passed
                   to the engine constructor) is kept.
    """
    PREFER_LOCAL = "prefer_local"
    PREFER_GLOBAL = "prefer_global"
