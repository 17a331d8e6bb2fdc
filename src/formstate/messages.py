"""
Message formatting for validation errors.

Validators may return either a finished message or a token from
ValidationKeys (optionally carrying a parameter, e.g. "formstate.min_length:3").
FormMessages.resolve() turns tokens into user-facing text and fills
{placeholder} templates with the field's label and value.

Subclass FormMessages (or DefaultFormMessages) to translate.
"""
from abc import ABC, abstractmethod
import logging
from datetime import date
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ValidationKeys:
    """Tokens returned by the built-in validators."""
    REQUIRED = 'formstate.required'
    INVALID_FORMAT = 'formstate.invalid_format'
    INVALID_EMAIL = 'formstate.invalid_email'
    INVALID_SELECTION = 'formstate.invalid_selection'
    MIN_LENGTH = 'formstate.min_length'
    MAX_LENGTH = 'formstate.max_length'
    MIN = 'formstate.min'
    MAX = 'formstate.max'

    SEPARATOR = ':'

    @classmethod
    def with_param(cls, key: str, param: Any) -> str:
        """Encode a parameter into a token: with_param(MIN, 3) -> 'formstate.min:3'."""
        return f"{key}{cls.SEPARATOR}{param}"

    @classmethod
    def split(cls, token: str) -> tuple:
        """Split a token into (key, param); param is None when absent."""
        key, sep, param = token.partition(cls.SEPARATOR)
        return key, (param if sep else None)


class FormMessages(ABC):
    """Interface for validation messages. Implement the methods to translate."""

    @abstractmethod
    def required(self, label: str) -> str:
        ...

    @abstractmethod
    def invalid_format(self) -> str:
        ...

    @abstractmethod
    def invalid_email(self) -> str:
        ...

    @abstractmethod
    def invalid_selection(self) -> str:
        ...

    @abstractmethod
    def min_length(self, min_length: Any) -> str:
        ...

    @abstractmethod
    def max_length(self, max_length: Any) -> str:
        ...

    @abstractmethod
    def min_value(self, minimum: Any) -> str:
        ...

    @abstractmethod
    def max_value(self, maximum: Any) -> str:
        ...

    @abstractmethod
    def min_date(self, min_date: date) -> str:
        ...

    @abstractmethod
    def max_date(self, max_date: date) -> str:
        ...

    def format(self, template: str, params: Dict[str, Any]) -> str:
        """Replace {name} placeholders in template with params[name].

        Unknown placeholders are left untouched.
        Example: format('{label} must be {min}', {'label': 'Age', 'min': 18})
        """
        result = template
        for name, value in params.items():
            result = result.replace(f"{{{name}}}", str(value))
        return result

    def resolve(self, token: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Turn a validator's return value into the message stored on the field.

        Known ValidationKeys tokens are mapped to the message methods; anything
        else is treated as a template and passed through format().
        """
        params = params or {}
        key, param = ValidationKeys.split(token)
        label = str(params.get('label', ''))

        if key == ValidationKeys.REQUIRED:
            return self.required(label)
        if key == ValidationKeys.INVALID_FORMAT:
            return self.invalid_format()
        if key == ValidationKeys.INVALID_EMAIL:
            return self.invalid_email()
        if key == ValidationKeys.INVALID_SELECTION:
            return self.invalid_selection()
        if param is not None:
            if key == ValidationKeys.MIN_LENGTH:
                return self.min_length(_parse_number(param))
            if key == ValidationKeys.MAX_LENGTH:
                return self.max_length(_parse_number(param))
            if key == ValidationKeys.MIN:
                return self.min_value(_parse_number(param))
            if key == ValidationKeys.MAX:
                return self.max_value(_parse_number(param))

        return self.format(token, params)


class DefaultFormMessages(FormMessages):
    """English messages."""

    def required(self, label: str) -> str:
        return f"{label} is required" if label else "This field is required"

    def invalid_format(self) -> str:
        return "Invalid format"

    def invalid_email(self) -> str:
        return "Invalid email address"

    def invalid_selection(self) -> str:
        return "Invalid selection"

    def min_length(self, min_length: Any) -> str:
        return f"Minimum length is {min_length} characters"

    def max_length(self, max_length: Any) -> str:
        return f"Maximum length is {max_length} characters"

    def min_value(self, minimum: Any) -> str:
        return f"Minimum value is {minimum}"

    def max_value(self, maximum: Any) -> str:
        return f"Maximum value is {maximum}"

    def min_date(self, min_date: date) -> str:
        return f"Date must be after {min_date.isoformat()}"

    def max_date(self, max_date: date) -> str:
        return f"Date must be before {max_date.isoformat()}"


def _parse_number(text: str) -> Any:
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError:
            logger.debug(f"Non-numeric message parameter kept as text: {text!r}")
            return text
