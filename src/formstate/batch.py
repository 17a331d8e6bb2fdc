"""
Batch updates: many field writes, one validation pass, one commit.

BatchUpdateCoordinator.apply() stages values and touched flags on a
copy-on-write BatchView, recomputes dirty flags, expands the validation
work set through the dependency graph, validates synchronously against the
same view and publishes exactly one snapshot. Async validators for fields
that passed the sync pass are started only after that commit.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from formstate.dependency_graph import DependencyGraph
from formstate.enums import ValidationMode
from formstate.errors import TypeMismatchError
from formstate.registry import FieldRegistry
from formstate.snapshot_model import FormSnapshot, SnapshotReader
from formstate.state_store import StateStore
from formstate.validation import ValidationEngine
from formstate.validation_result import ValidationResult

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class BatchResult:
    """Outcome of one batch.

    Attributes:
        updated_fields: Keys whose value actually changed.
        validated_fields: Keys validated by this batch, dependents included.
        type_mismatches: key -> message for rejected values.
        missing_fields: Keys that are not registered.
        transform_errors: key -> message for transformers that raised.
    """
    updated_fields: List[str] = field(default_factory=list)
    validated_fields: List[str] = field(default_factory=list)
    type_mismatches: Dict[str, str] = field(default_factory=dict)
    missing_fields: List[str] = field(default_factory=list)
    transform_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """True when every update was accepted."""
        return not (self.type_mismatches or self.missing_fields or self.transform_errors)

    @property
    def errors(self) -> Dict[str, str]:
        """Every rejected key with a message."""
        errors = {key: f"Field '{key}' is not registered" for key in self.missing_fields}
        errors.update(self.type_mismatches)
        errors.update(self.transform_errors)
        return errors


class FormBatch:
    """Collects updates for FormEngine.apply_batch().

        batch = FormBatch().set('name', 'Ada').set('age', 36)
        engine.apply_batch(batch)
    """

    def __init__(self):
        self._updates: Dict[str, Any] = {}
        # Set when the batch has been applied (FormEngine.atomic())
        self.result: Optional[BatchResult] = None

    def set(self, key: str, value: Any) -> 'FormBatch':
        self._updates[key] = value
        return self

    def add_all(self, values: Mapping[str, Any]) -> 'FormBatch':
        self._updates.update(values)
        return self

    @property
    def updates(self) -> Dict[str, Any]:
        return dict(self._updates)

    def clear(self) -> None:
        self._updates.clear()

    def __len__(self) -> int:
        return len(self._updates)

    def __bool__(self) -> bool:
        return bool(self._updates)


class BatchView(SnapshotReader):
    """Staging area over a snapshot.

    Maps are shared with the base snapshot until first written, then copied
    once. Counters are updated by delta on every staged transition. Cross-field
    validators see staged values through the SnapshotReader interface.
    """

    def __init__(self, base: FormSnapshot):
        self.base = base
        self.values = base.values
        self.validations = base.validations
        self.dirty = base.dirty
        self.touched = base.touched
        self.pending = base.pending
        self.counters = base.counters()
        self._owned: Set[str] = set()

    def _writable(self, name: str) -> Dict[str, Any]:
        if name not in self._owned:
            setattr(self, name, dict(getattr(self, name)))
            self._owned.add(name)
        return getattr(self, name)

    def stage_value(self, key: str, value: Any) -> None:
        self._writable('values')[key] = value

    def stage_dirty(self, key: str, flag: bool) -> None:
        old = self.dirty.get(key, False)
        if old != flag or key not in self.dirty:
            self.counters.track_dirty(old, flag)
            self._writable('dirty')[key] = flag

    def stage_touched(self, key: str, flag: bool) -> bool:
        """Stage the flag; returns True when it changed."""
        if self.touched.get(key, False) == flag:
            return False
        self._writable('touched')[key] = flag
        return True

    def stage_pending(self, key: str, flag: bool) -> None:
        old = self.pending.get(key, False)
        if old != flag:
            self.counters.track_pending(old, flag)
            self._writable('pending')[key] = flag

    def stage_validation(self, key: str, result: ValidationResult) -> bool:
        """Stage result; returns True when it differs from the current one."""
        old = self.validations.get(key)
        if old == result:
            return False
        self.counters.track_validation(old, result)
        self._writable('validations')[key] = result
        return True

    def build(self, **changes) -> FormSnapshot:
        return self.base.with_counters(
            self.counters,
            values=self.values,
            validations=self.validations,
            dirty=self.dirty,
            touched=self.touched,
            pending=self.pending,
            **changes,
        )


class BatchUpdateCoordinator:
    """Applies batches and owns the set of keys validated at least once."""

    def __init__(
        self,
        registry: FieldRegistry,
        graph: DependencyGraph,
        validation: ValidationEngine,
        store: StateStore,
        on_values_changed: Optional[Callable[[Mapping[str, Any]], None]] = None,
    ):
        self._registry = registry
        self._graph = graph
        self._validation = validation
        self._store = store
        self._on_values_changed = on_values_changed
        # Keys validated since the last reset; ON_USER_INTERACTION and ON_BLUR
        # keep validating a field once it has been validated.
        self.validated_keys: Set[str] = set()

    def apply(
        self,
        updates: Mapping[str, Any],
        touched: Optional[Mapping[str, bool]] = None,
        strict: bool = False,
    ) -> BatchResult:
        result = BatchResult()

        # 1-2. Partition and transform; nothing is staged before strict can raise
        accepted: Dict[str, Any] = {}
        for key, raw in updates.items():
            registered = self._registry.get(key)
            if registered is None:
                result.missing_fields.append(key)
                continue
            try:
                value = registered.transform(raw)
            except Exception as e:
                result.transform_errors[key] = f"Transform error: {e}"
                continue
            expected = self._registry.expected_type(key)
            if not self._registry.is_type_compatible(expected, value):
                error = TypeMismatchError(key, expected, type(value))
                if strict:
                    raise error
                result.type_mismatches[key] = str(error)
                continue
            accepted[key] = value

        view = BatchView(self._store.snapshot)
        changed: List[str] = []
        for key, value in accepted.items():
            current = view.values.get(key, _MISSING)
            if current is not _MISSING and _values_equal(current, value):
                continue
            view.stage_value(key, value)
            # 3. Dirty vs recorded initial
            view.stage_dirty(key, self.compute_dirty(key, value))
            changed.append(key)

        touched_changed: List[str] = []
        for key, flag in (touched or {}).items():
            if key not in self._registry:
                if key not in result.missing_fields:
                    result.missing_fields.append(key)
                continue
            if view.stage_touched(key, flag):
                touched_changed.append(key)

        result.updated_fields = changed
        if result.missing_fields or result.type_mismatches or result.transform_errors:
            logger.debug(f"BATCH: rejected {result.errors}")
        if not changed and not touched_changed:
            return result

        # 4. Work set: direct keys, then dependents of the value-changed keys
        direct = list(dict.fromkeys(changed + touched_changed))
        work: List[str] = []
        visited: Set[str] = set()
        for key in direct:
            visited.add(key)
            if self._should_validate(key, view):
                work.append(key)
        for key in changed:
            for dependent in self._graph.transitive_dependents(key):
                if dependent in visited:
                    continue
                visited.add(dependent)
                if dependent in self._registry and self._should_validate(dependent, view):
                    work.append(dependent)

        # 5. Sync pass on the shared view
        async_keys = self.stage_validations(view, work)
        result.validated_fields = work

        # 6-8. Commit, async, persist
        changed_fields = frozenset(direct) | frozenset(work)
        self.commit_view(view, changed_fields, async_keys)
        logger.debug(
            f"BATCH: {len(changed)} changed, {len(touched_changed)} touched, "
            f"{len(work)} validated, {len(async_keys)} async"
        )
        if changed and self._on_values_changed is not None:
            self._on_values_changed(view.values)
        return result

    def compute_dirty(self, key: str, value: Any) -> bool:
        initial = self._registry.initial_value(key)
        if initial is None:
            return value is not None
        return not _values_equal(value, initial)

    def _should_validate(self, key: str, view: BatchView) -> bool:
        registered = self._registry.get(key)
        if registered is None:
            return False
        mode = registered.mode
        if mode is ValidationMode.ALWAYS:
            return True
        if mode is ValidationMode.DISABLED:
            return False
        touched = view.is_field_touched(key)
        previously = key in self.validated_keys
        if mode is ValidationMode.ON_USER_INTERACTION:
            return view.is_field_dirty(key) or touched or previously
        if mode is ValidationMode.ON_BLUR:
            return touched or previously
        return False

    def stage_validations(self, view: BatchView, keys: Iterable[str], run_async: bool = True) -> List[str]:
        """Validate keys against view and stage the results.

        Returns the keys staged as VALIDATING, whose async validators must be
        started once the view has been committed. With run_async=False only
        the sync result is staged.
        """
        async_keys: List[str] = []
        can_schedule = run_async and self._validation.can_schedule()
        for key in keys:
            registered = self._registry.get(key)
            if registered is None:
                continue
            self._validation.cancel(key)
            outcome = self._validation.sync_validate(registered, view.values.get(key), view)
            if outcome.is_valid and registered.has_async_validator and can_schedule:
                outcome = ValidationResult.VALIDATING
                async_keys.append(key)
            view.stage_validation(key, outcome)
            self.validated_keys.add(key)
        return async_keys

    def commit_view(self, view: BatchView, changed_fields: Optional[frozenset], async_keys: Iterable[str],
                    **changes) -> FormSnapshot:
        """Publish view as one snapshot, then start the staged async validators."""
        snapshot = view.build(changed_fields=changed_fields, **changes)
        self._store.commit(snapshot)
        for key in async_keys:
            self._validation.schedule_async(key, snapshot.values.get(key), already_marked=True)
        return snapshot


def _values_equal(a: Any, b: Any) -> bool:
    try:
        return bool(a == b)
    except Exception:
        return a is b
