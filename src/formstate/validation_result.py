"""
Per-field validation outcome.

A ValidationResult is one of three states:
- VALID:      passed every validator that has run.
- INVALID:    carries the (already formatted) error message.
- VALIDATING: an async validator is in flight. Provisionally valid - it is
              not counted as an error - but it is counted as pending.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ValidationStatus(Enum):
    VALID = "valid"
    INVALID = "invalid"
    VALIDATING = "validating"


@dataclass(frozen=True)
class ValidationResult:
    """Immutable validation outcome for a single field."""
    status: ValidationStatus = ValidationStatus.VALID
    message: Optional[str] = None

    @classmethod
    def invalid(cls, message: str) -> 'ValidationResult':
        return cls(ValidationStatus.INVALID, message)

    @property
    def is_valid(self) -> bool:
        """True for VALID and VALIDATING."""
        return self.status is not ValidationStatus.INVALID

    @property
    def is_invalid(self) -> bool:
        return self.status is ValidationStatus.INVALID

    @property
    def is_validating(self) -> bool:
        return self.status is ValidationStatus.VALIDATING

    def to_dict(self) -> Dict[str, Any]:
        return {'status': self.status.value, 'message': self.message}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationResult':
        return cls(ValidationStatus(data['status']), data.get('message'))


ValidationResult.VALID = ValidationResult(ValidationStatus.VALID)
ValidationResult.VALIDATING = ValidationResult(ValidationStatus.VALIDATING)
