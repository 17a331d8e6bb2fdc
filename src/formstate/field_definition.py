"""
Field definitions and their registered (compiled) form.

FieldDefinition is what callers write. RegisteredField is built from it once,
at registration time: it resolves the validation mode and debounce against
the engine config and exposes validators as plain (value) / (value, view)
callables, so the rest of the engine never inspects the definition again.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from formstate.config import FormEngineConfig
from formstate.enums import InitialValueStrategy, ValidationMode

Validator = Callable[[Any], Optional[str]]
CrossFieldValidator = Callable[[Any, Any], Optional[str]]
AsyncValidator = Callable[[Any], Awaitable[Optional[str]]]
Transformer = Callable[[Any], Any]


@dataclass(frozen=True)
class FieldDefinition:
    """Declaration of one form field.

    Attributes:
        key: Unique key within an engine. Dotted keys ('user.name') and
             indexed keys ('tags[0]') are rebuilt by to_nested_map().
        initial_value: Value the field starts with and is reset to.
        value_type: Declared type; defaults to the type of the recorded
                    initial value. int and float are mutually compatible.
        empty_value: Value written by ResetStrategy.EMPTY.
        validator: (value) -> error or None.
        cross_field_validator: (value, view) -> error or None; view has the
                               SnapshotReader interface.
        async_validator: async (value) -> error or None.
        debounce: Seconds before the async validator runs (None = config default).
        depends_on: Keys whose changes revalidate this field.
        validation_mode: When the field validates itself automatically.
        transformer: (raw) -> value, applied before storing.
        label: Used in messages ({label} placeholder).
        initial_value_strategy: Which initial value wins on re-registration.
    """
    key: str
    initial_value: Any = None
    value_type: Optional[type] = None
    empty_value: Any = None
    validator: Optional[Validator] = None
    cross_field_validator: Optional[CrossFieldValidator] = None
    async_validator: Optional[AsyncValidator] = None
    debounce: Optional[float] = None
    depends_on: Sequence[str] = ()
    validation_mode: ValidationMode = ValidationMode.INHERIT
    transformer: Optional[Transformer] = None
    label: Optional[str] = None
    initial_value_strategy: InitialValueStrategy = InitialValueStrategy.PREFER_LOCAL

    def __post_init__(self):
        if not self.key:
            raise ValueError("FieldDefinition.key must be a non-empty string")
        # Normalize to a tuple so definitions stay hashable and immutable
        object.__setattr__(self, 'depends_on', tuple(self.depends_on))


@dataclass(frozen=True)
class FieldArray:
    """Key helper for list-valued fields.

    FieldArray('tags').item(2) -> 'tags[2]'
    """
    key: str

    def item(self, index: int) -> str:
        return f"{self.key}[{index}]"

    def with_prefix(self, prefix: str) -> 'FieldArray':
        return FieldArray(f"{prefix}.{self.key}")

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class RegisteredField:
    """A FieldDefinition resolved against the engine config."""
    definition: FieldDefinition
    mode: ValidationMode
    debounce: float
    depends_on: Tuple[str, ...] = field(default=())

    @classmethod
    def compile(cls, definition: FieldDefinition, config: FormEngineConfig) -> 'RegisteredField':
        mode = definition.validation_mode
        if mode is ValidationMode.INHERIT:
            mode = config.validation_mode
        debounce = definition.debounce if definition.debounce is not None else config.default_debounce
        return cls(definition=definition, mode=mode, debounce=debounce, depends_on=definition.depends_on)

    @property
    def key(self) -> str:
        return self.definition.key

    @property
    def label(self) -> str:
        return self.definition.label or self.definition.key

    @property
    def has_async_validator(self) -> bool:
        return self.definition.async_validator is not None

    def validate(self, value: Any) -> Optional[str]:
        validator = self.definition.validator
        return validator(value) if validator is not None else None

    def cross_validate(self, value: Any, view: Any) -> Optional[str]:
        validator = self.definition.cross_field_validator
        return validator(value, view) if validator is not None else None

    async def async_validate(self, value: Any) -> Optional[str]:
        return await self.definition.async_validator(value)

    def transform(self, raw: Any) -> Any:
        transformer = self.definition.transformer
        return transformer(raw) if transformer is not None else raw

    def empty_value(self, initial_value: Any) -> Any:
        """Value for ResetStrategy.EMPTY: declared empty_value, else a type default."""
        if self.definition.empty_value is not None:
            return self.definition.empty_value
        sample = initial_value if initial_value is not None else self.definition.initial_value
        if isinstance(sample, str):
            return ''
        if isinstance(sample, bool):
            return False
        if isinstance(sample, (int, float)):
            return 0
        if isinstance(sample, list):
            return []
        if isinstance(sample, dict):
            return {}
        return None
