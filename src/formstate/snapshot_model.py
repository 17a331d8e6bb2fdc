"""
FormSnapshot: the immutable state published by the StateStore.

Design Philosophy: Correct by Construction
- Frozen dataclass, replaced (never mutated) by every state change
- Counters travel with the snapshot and are maintained by delta
- recount() exists for registration, full reset and invariant checks
- Read accessors are shared with the batch view through SnapshotReader
"""
from dataclasses import dataclass, field, replace
import logging
import re
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from formstate.validation_result import ValidationResult

logger = logging.getLogger(__name__)

_PATH_TOKEN = re.compile(r'([^.\[\]]+)|\[(\d+)\]')


@dataclass
class Counters:
    """Mutable running totals used while a new snapshot is being built.

    Callers feed every old -> new transition through the track_* methods;
    the totals are then written into the next snapshot.
    """
    errors: int = 0
    dirty: int = 0
    pending: int = 0

    def track_validation(self, old: Optional[ValidationResult], new: ValidationResult) -> None:
        old_invalid = old is not None and old.is_invalid
        old_validating = old is not None and old.is_validating
        if old_invalid != new.is_invalid:
            self.errors += 1 if new.is_invalid else -1
        if old_validating != new.is_validating:
            self.pending += 1 if new.is_validating else -1

    def drop_validation(self, old: Optional[ValidationResult]) -> None:
        if old is None:
            return
        if old.is_invalid:
            self.errors -= 1
        if old.is_validating:
            self.pending -= 1

    def track_dirty(self, old: bool, new: bool) -> None:
        if old != new:
            self.dirty += 1 if new else -1

    def track_pending(self, old: bool, new: bool) -> None:
        if old != new:
            self.pending += 1 if new else -1


class SnapshotReader:
    """Read accessors over values / validations / dirty / touched / pending maps.

    Subclasses provide those five attributes. Cross-field validators receive
    an object with this interface, so they can be written against either a
    published FormSnapshot or an in-flight batch view.
    """
    values: Mapping[str, Any]
    validations: Mapping[str, ValidationResult]
    dirty: Mapping[str, bool]
    touched: Mapping[str, bool]
    pending: Mapping[str, bool]

    def value(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def validation(self, key: str) -> ValidationResult:
        return self.validations.get(key, ValidationResult.VALID)

    def is_field_dirty(self, key: str) -> bool:
        return self.dirty.get(key, False)

    def is_field_touched(self, key: str) -> bool:
        return self.touched.get(key, False)

    def is_field_pending(self, key: str) -> bool:
        return self.pending.get(key, False)

    @property
    def errors(self) -> Dict[str, str]:
        """key -> message for every invalid field."""
        return {
            key: result.message or ''
            for key, result in self.validations.items()
            if result.is_invalid
        }

    @property
    def error_messages(self) -> List[str]:
        return [message for message in self.errors.values() if message]

    def is_group_valid(self, prefix: str) -> bool:
        """True when no field under 'prefix.' is invalid."""
        group = f"{prefix}."
        return all(r.is_valid for k, r in self.validations.items() if k.startswith(group))

    def is_group_dirty(self, prefix: str) -> bool:
        group = f"{prefix}."
        return any(d for k, d in self.dirty.items() if k.startswith(group))

    def to_nested_map(self) -> Dict[str, Any]:
        """Rebuild nested dicts/lists from flat dotted keys.

        'user.name' -> {'user': {'name': ...}}
        'addresses[1].city' -> {'addresses': [None, {'city': ...}]}
        """
        result: Dict[str, Any] = {}
        for key, value in self.values.items():
            _set_nested_value(result, key, value)
        return result


def _set_nested_value(root: Dict[str, Any], path: str, value: Any) -> None:
    tokens = [name if name else int(index) for name, index in _PATH_TOKEN.findall(path)]
    if not tokens:
        return

    current: Any = root
    for position, token in enumerate(tokens):
        is_last = position == len(tokens) - 1
        next_container: Any = None if is_last else ([] if isinstance(tokens[position + 1], int) else {})

        if isinstance(token, int):
            if not isinstance(current, list):
                logger.debug(f"Skipping '{path}': index segment under a non-list container")
                return
            while len(current) <= token:
                current.append(None)
            if is_last:
                current[token] = value
            else:
                if current[token] is None:
                    current[token] = next_container
                current = current[token]
        else:
            if not isinstance(current, dict):
                logger.debug(f"Skipping '{path}': name segment under a non-dict container")
                return
            if is_last:
                current[token] = value
            else:
                current = current.setdefault(token, next_container)


@dataclass(frozen=True)
class FormSnapshot(SnapshotReader):
    """Immutable state of every field at one point in logical time.

    The maps are never mutated after publication; every state change builds
    a new snapshot (copy-on-write for the maps it touches) so unchanged maps
    are shared by reference between consecutive snapshots.

    changed_fields is the delta since the previous snapshot; None means
    "assume everything changed" (first load, history restore).
    """
    values: Mapping[str, Any] = field(default_factory=dict)
    validations: Mapping[str, ValidationResult] = field(default_factory=dict)
    dirty: Mapping[str, bool] = field(default_factory=dict)
    touched: Mapping[str, bool] = field(default_factory=dict)
    pending: Mapping[str, bool] = field(default_factory=dict)
    is_submitting: bool = False
    reset_count: int = 0
    error_count: int = 0
    dirty_count: int = 0
    pending_count: int = 0
    changed_fields: Optional[FrozenSet[str]] = None

    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    @property
    def is_dirty(self) -> bool:
        return self.dirty_count > 0

    @property
    def is_pending(self) -> bool:
        return self.pending_count > 0

    def counters(self) -> Counters:
        """Start a running total from this snapshot's counters."""
        return Counters(self.error_count, self.dirty_count, self.pending_count)

    def recount(self) -> Counters:
        """Count errors / dirty / pending from scratch."""
        validations = self.validations.values()
        return Counters(
            errors=sum(1 for r in validations if r.is_invalid),
            dirty=sum(1 for d in self.dirty.values() if d),
            pending=sum(1 for p in self.pending.values() if p) + sum(1 for r in validations if r.is_validating),
        )

    def with_counters(self, counters: Counters, **changes) -> 'FormSnapshot':
        """Return a copy carrying the given counters plus any other field changes."""
        return replace(
            self,
            error_count=counters.errors,
            dirty_count=counters.dirty,
            pending_count=counters.pending,
            **changes,
        )

    def with_recounted_counters(self, **changes) -> 'FormSnapshot':
        draft = replace(self, **changes) if changes else self
        return draft.with_counters(draft.recount())

    def to_dict(self) -> Dict[str, Any]:
        """Export to JSON-serializable dict (values must be JSON-serializable)."""
        return {
            'values': dict(self.values),
            'validations': {k: r.to_dict() for k, r in self.validations.items()},
            'dirty': dict(self.dirty),
            'touched': dict(self.touched),
            'pending': dict(self.pending),
            'is_submitting': self.is_submitting,
            'reset_count': self.reset_count,
            'changed_fields': sorted(self.changed_fields) if self.changed_fields is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FormSnapshot':
        """Import from dict (e.g., loaded from JSON). Counters are recounted."""
        changed = data.get('changed_fields')
        snapshot = cls(
            values=dict(data['values']),
            validations={k: ValidationResult.from_dict(v) for k, v in data['validations'].items()},
            dirty=dict(data.get('dirty', {})),
            touched=dict(data.get('touched', {})),
            pending=dict(data.get('pending', {})),
            is_submitting=data.get('is_submitting', False),
            reset_count=data.get('reset_count', 0),
            changed_fields=frozenset(changed) if changed is not None else None,
        )
        return snapshot.with_recounted_counters()
