"""
Fluent validator chains.

    validator = Validators.string().required().email().build()
    FieldDefinition('email', initial_value='', validator=validator)

Each rule returns a ValidationKeys token (or the custom message passed in);
the engine resolves tokens through its FormMessages. Rules other than
required() treat None and '' as "nothing to check".
"""
import re
from typing import Any, Awaitable, Callable, List, Optional, Pattern, TypeVar, Union

from formstate.messages import ValidationKeys

SyncRule = Callable[[Any], Optional[str]]
AsyncRule = Callable[[Any], Awaitable[Optional[str]]]

_EMAIL_PATTERN = re.compile(r'^[\w\-.]+@([\w-]+\.)+[\w-]{2,}$')

ChainT = TypeVar('ChainT', bound='ValidatorChain')


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == '')


class ValidatorChain:
    """Ordered list of sync rules plus optional async rules."""

    def __init__(self):
        self._sync_rules: List[SyncRule] = []
        self._async_rules: List[AsyncRule] = []

    def _add(self: ChainT, rule: SyncRule) -> ChainT:
        self._sync_rules.append(rule)
        return self

    def required(self: ChainT, message: Optional[str] = None) -> ChainT:
        """Reject None and whitespace-only strings."""
        def rule(value: Any) -> Optional[str]:
            if value is None or (isinstance(value, str) and not value.strip()):
                return message or ValidationKeys.REQUIRED
            return None
        return self._add(rule)

    def one_of(self: ChainT, choices, message: Optional[str] = None) -> ChainT:
        """Accept only values from choices (blank values pass)."""
        allowed = list(choices)

        def rule(value: Any) -> Optional[str]:
            if _is_blank(value) or value in allowed:
                return None
            return message or ValidationKeys.INVALID_SELECTION
        return self._add(rule)

    def custom(self: ChainT, rule: SyncRule) -> ChainT:
        """Append an arbitrary (value) -> error|None rule."""
        return self._add(rule)

    def add_async(self: ChainT, rule: AsyncRule) -> ChainT:
        """Append an async (value) -> error|None rule."""
        self._async_rules.append(rule)
        return self

    def build(self) -> SyncRule:
        """Combine the sync rules; the first error wins."""
        rules = list(self._sync_rules)

        def validate(value: Any) -> Optional[str]:
            for rule in rules:
                error = rule(value)
                if error is not None:
                    return error
            return None
        return validate

    def build_async(self) -> AsyncRule:
        """Combine the async rules.

        The async rules only run when the sync rules pass; a sync failure is
        reported by the sync validator, so the async result is None.
        """
        sync_validate = self.build()
        rules = list(self._async_rules)

        async def validate(value: Any) -> Optional[str]:
            if sync_validate(value) is not None:
                return None
            for rule in rules:
                error = await rule(value)
                if error is not None:
                    return error
            return None
        return validate


class StringValidator(ValidatorChain):

    def email(self, message: Optional[str] = None) -> 'StringValidator':
        def rule(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            if not _EMAIL_PATTERN.match(str(value)):
                return message or ValidationKeys.INVALID_EMAIL
            return None
        return self._add(rule)

    def min_length(self, length: int, message: Optional[str] = None) -> 'StringValidator':
        def rule(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            if len(value) < length:
                return message or ValidationKeys.with_param(ValidationKeys.MIN_LENGTH, length)
            return None
        return self._add(rule)

    def max_length(self, length: int, message: Optional[str] = None) -> 'StringValidator':
        def rule(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            if len(value) > length:
                return message or ValidationKeys.with_param(ValidationKeys.MAX_LENGTH, length)
            return None
        return self._add(rule)

    def pattern(self, regex: Union[str, Pattern], message: Optional[str] = None) -> 'StringValidator':
        compiled = re.compile(regex) if isinstance(regex, str) else regex

        def rule(value: Any) -> Optional[str]:
            if _is_blank(value):
                return None
            if not compiled.search(str(value)):
                return message or ValidationKeys.INVALID_FORMAT
            return None
        return self._add(rule)


class NumberValidator(ValidatorChain):

    def min(self, minimum, message: Optional[str] = None) -> 'NumberValidator':
        def rule(value: Any) -> Optional[str]:
            if value is None:
                return None
            if value < minimum:
                return message or ValidationKeys.with_param(ValidationKeys.MIN, minimum)
            return None
        return self._add(rule)

    def max(self, maximum, message: Optional[str] = None) -> 'NumberValidator':
        def rule(value: Any) -> Optional[str]:
            if value is None:
                return None
            if value > maximum:
                return message or ValidationKeys.with_param(ValidationKeys.MAX, maximum)
            return None
        return self._add(rule)

    def positive(self, message: Optional[str] = None) -> 'NumberValidator':
        return self.min(0, message)


class Validators:
    """Entry points for validator chains."""

    @staticmethod
    def string() -> StringValidator:
        return StringValidator()

    @staticmethod
    def number() -> NumberValidator:
        return NumberValidator()

    @staticmethod
    def any() -> ValidatorChain:
        return ValidatorChain()
