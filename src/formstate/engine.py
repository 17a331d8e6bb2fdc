"""
FormEngine: the facade that owns one instance of every component.

    engine = FormEngine(fields=[
        FieldDefinition('password', initial_value='', validator=Validators.string().min_length(8).build()),
        FieldDefinition('confirm', initial_value='', depends_on=['password'],
                        cross_field_validator=lambda v, view: None if v == view.value('password') else 'No match'),
    ])
    engine.set_value('password', 'hunter2!')   # revalidates 'confirm' in the same commit
    engine.snapshot.errors                      # {'confirm': 'No match'}

Every mutation goes through the BatchUpdateCoordinator or builds a BatchView
directly, and ends in exactly one StateStore commit. History, bindings and
field listeners observe the store's commit stream.
"""
import asyncio
from contextlib import contextmanager
from dataclasses import replace
import inspect
import logging
from pathlib import Path
import time
from typing import Any, Awaitable, Callable, Dict, Generator, Iterable, List, Mapping, Optional, Set, Union

from formstate.batch import BatchResult, BatchUpdateCoordinator, BatchView, FormBatch
from formstate.binding import BindingManager
from formstate.config import FormEngineConfig, get_default_config
from formstate.dependency_graph import DependencyGraph
from formstate.enums import ResetStrategy, ValidationMode
from formstate.errors import EngineDisposedError, FormStateError, RequiredValueError
from formstate.field_definition import FieldArray, FieldDefinition
from formstate.history import HistoryManager
from formstate.messages import DefaultFormMessages, FormMessages
from formstate.persistence import FormPersistence
from formstate.registry import FieldRegistry
from formstate.snapshot_model import FormSnapshot
from formstate.state_store import SnapshotListener, StateStore
from formstate.validation import ValidationEngine
from formstate.validation_result import ValidationResult

logger = logging.getLogger(__name__)

FieldListener = Callable[[Any], None]
KeyLike = Union[str, FieldArray]


def _key(key: KeyLike) -> str:
    return key.key if isinstance(key, FieldArray) else key


class FormEngine:
    """Reactive form state: values, validation, dirty/touched/pending flags.

    Args:
        fields: Definitions registered before the first snapshot is published.
        initial_values: Initial values that win over the definitions' own
                        for keys registered later (e.g. loaded from a server).
        form_id: Key used with the persistence adapter.
        persistence: Optional adapter; values are saved after every
                     value-changing commit and restored on construction
                     when an event loop is running.
        messages: Formatter for validator error tokens.
        config: Engine tunables; defaults to get_default_config().
    """

    def __init__(
        self,
        fields: Optional[Iterable[FieldDefinition]] = None,
        initial_values: Optional[Mapping[str, Any]] = None,
        form_id: Optional[str] = None,
        persistence: Optional[FormPersistence] = None,
        messages: Optional[FormMessages] = None,
        config: Optional[FormEngineConfig] = None,
    ):
        self.config = config if config is not None else get_default_config()
        self.form_id = form_id
        self.persistence = persistence
        self.messages = messages if messages is not None else DefaultFormMessages()

        self._graph = DependencyGraph()
        self._registry = FieldRegistry(self._graph, self.config, initial_values)
        self._store = StateStore(FormSnapshot())
        self._validation = ValidationEngine(self._registry, self._store, self.messages, self.config)
        self._coordinator = BatchUpdateCoordinator(
            self._registry, self._graph, self._validation, self._store,
            on_values_changed=self._persist_values,
        )
        self._bindings = BindingManager(self)

        self._field_listeners: Dict[str, List[FieldListener]] = {}
        self._last_published: FormSnapshot = self._store.snapshot

        # atomic() state
        self._atomic_depth = 0
        self._atomic_batch: Optional[FormBatch] = None
        self._atomic_touched: Dict[str, bool] = {}
        self._atomic_strict = False

        # submit() state
        self._last_submit_time: Optional[float] = None
        self._submit_debounce_task: Optional[asyncio.Task] = None

        self._background_tasks: Set[asyncio.Task] = set()
        self._disposed = False

        if fields:
            self.register_fields(fields)
        self._last_published = self._store.snapshot

        self._history: Optional[HistoryManager] = None
        if self.config.record_history:
            self._history = HistoryManager(
                self._store, self.config.history_limit, on_restored=self._on_history_restored
            )
        self._store.subscribe(self._dispatch_field_listeners)

        if persistence is not None and form_id is not None:
            self._spawn(self.restore(), "restore")

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> FormSnapshot:
        return self._store.snapshot

    @property
    def values(self) -> Dict[str, Any]:
        return dict(self._store.snapshot.values)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def get_value(self, key: KeyLike, default: Any = None) -> Any:
        """Current value; inside atomic() staged writes are visible."""
        key = _key(key)
        if self._atomic_batch is not None:
            staged = self._atomic_batch.updates
            if key in staged:
                return staged[key]
        return self._store.snapshot.values.get(key, default)

    def require_value(self, key: KeyLike) -> Any:
        """Like get_value() but raises RequiredValueError when the value is None."""
        key = _key(key)
        value = self.get_value(key)
        if value is None:
            detail = None if key in self._registry else "field is not registered"
            raise RequiredValueError(key, detail)
        return value

    @property
    def errors(self) -> Dict[str, str]:
        return self._store.snapshot.errors

    @property
    def error_messages(self) -> List[str]:
        return self._store.snapshot.error_messages

    def to_nested_map(self) -> Dict[str, Any]:
        return self._store.snapshot.to_nested_map()

    def get_changed_values(self) -> Dict[str, Any]:
        """Values of the fields that differ from their initial value."""
        snapshot = self._store.snapshot
        return {key: value for key, value in snapshot.values.items() if snapshot.dirty.get(key, False)}

    @property
    def validation_durations(self) -> Dict[str, float]:
        return self._validation.durations

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_value(self, key: KeyLike, value: Any) -> Optional[BatchResult]:
        """Write one value. Raises TypeMismatchError for an incompatible type.

        Inside atomic() the write is staged and None is returned.
        """
        return self._apply({_key(key): value}, strict=True)

    def set_values(self, values: Mapping[str, Any], strict: bool = False) -> Optional[BatchResult]:
        return self._apply(values, strict=strict)

    def apply_batch(self, batch: Union[FormBatch, Mapping[str, Any]], strict: bool = False) -> Optional[BatchResult]:
        updates = batch.updates if isinstance(batch, FormBatch) else batch
        result = self._apply(updates, strict=strict)
        if isinstance(batch, FormBatch):
            batch.result = result
        return result

    def _apply(self, updates: Mapping[str, Any], touched: Optional[Mapping[str, bool]] = None,
               strict: bool = False) -> Optional[BatchResult]:
        if not self._is_active("write"):
            return BatchResult()
        if self._atomic_batch is not None:
            self._atomic_batch.add_all(updates)
            if touched:
                self._atomic_touched.update(touched)
            self._atomic_strict = self._atomic_strict or strict
            return None
        return self._coordinator.apply(updates, touched=touched, strict=strict)

    @contextmanager
    def atomic(self) -> Generator[FormBatch, None, None]:
        """Coalesce every write in the block into one batch and one commit.

        Nested blocks join the outermost one. The batch is applied when the
        outermost block exits; its BatchResult is then available as
        batch.result. Strict writes raise TypeMismatchError at that point.
        When the outermost block raises, the staged writes are discarded and
        the block's own exception propagates.

        Example:
            with engine.atomic() as batch:
                engine.set_value('first', 'Ada')
                engine.set_value('last', 'Lovelace')
            assert batch.result.success
        """
        self._atomic_depth += 1
        if self._atomic_depth == 1:
            self._atomic_batch = FormBatch()
            self._atomic_touched = {}
            self._atomic_strict = False
        batch = self._atomic_batch

        failed = False
        try:
            yield batch
        except BaseException:
            failed = True
            raise
        finally:
            self._atomic_depth -= 1
            if self._atomic_depth == 0:
                touched = self._atomic_touched
                strict = self._atomic_strict
                self._atomic_batch = None
                self._atomic_touched = {}
                if failed:
                    logger.debug(f"ATOMIC: block raised, discarding {len(batch)} staged update(s)")
                elif batch or touched:
                    logger.debug(f"ATOMIC: applying {len(batch)} update(s), {len(touched)} touched")
                    batch.result = self._coordinator.apply(batch.updates, touched=touched, strict=strict)

    def mark_as_touched(self, key: KeyLike) -> None:
        """Flag the field as touched (blur). ON_BLUR fields validate here."""
        key = _key(key)
        if key not in self._registry:
            logger.debug(f"mark_as_touched: '{key}' is not registered")
            return
        self._apply({}, touched={key: True})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_field(self, definition: FieldDefinition) -> None:
        self.register_fields([definition])

    def register_fields(self, definitions: Iterable[FieldDefinition]) -> None:
        """Register new fields or replace existing definitions.

        New fields start at their recorded initial value. A re-registered
        field takes the new initial value only when it is not dirty.
        Fields in ALWAYS mode are validated (sync only) in the same commit.
        """
        if not self._is_active("register_fields"):
            return
        definitions = list(definitions)
        if not definitions:
            return

        results = self._registry.register(definitions)
        snapshot = self._store.snapshot
        values = dict(snapshot.values)
        validations = dict(snapshot.validations)
        dirty = dict(snapshot.dirty)
        touched = dict(snapshot.touched)

        keys: List[str] = []
        to_validate: List[str] = []
        for registered, is_new in results:
            key = registered.key
            keys.append(key)
            if key not in values:
                values[key] = self._registry.initial_value(key)
            elif not is_new and registered.definition.initial_value is not None and not dirty.get(key, False):
                values[key] = self._registry.initial_value(key)
            dirty[key] = self._coordinator.compute_dirty(key, values[key])
            touched.setdefault(key, False)

            self._validation.cancel(key)
            if registered.mode is ValidationMode.ALWAYS or key in self._coordinator.validated_keys:
                to_validate.append(key)
            elif key in validations and validations[key].is_validating:
                validations[key] = ValidationResult.VALID

        # Keep map identity when nothing changed so history skips the commit
        if values == snapshot.values:
            values = snapshot.values

        base = snapshot.with_recounted_counters(
            values=values, validations=validations, dirty=dirty, touched=touched
        )
        view = BatchView(base)
        self._coordinator.stage_validations(view, to_validate, run_async=False)
        self._coordinator.commit_view(view, frozenset(keys), ())

    def unregister_field(self, key: KeyLike, preserve_state: bool = False) -> None:
        self.unregister_fields([_key(key)], preserve_state=preserve_state)

    def unregister_fields(self, keys: Iterable[KeyLike], preserve_state: bool = False) -> None:
        """Remove fields. With preserve_state, value/dirty/touched stay in the snapshot."""
        if not self._is_active("unregister_fields"):
            return
        removed = self._registry.unregister(_key(k) for k in keys)
        if not removed:
            return

        snapshot = self._store.snapshot
        values = dict(snapshot.values)
        validations = dict(snapshot.validations)
        dirty = dict(snapshot.dirty)
        touched = dict(snapshot.touched)
        pending = dict(snapshot.pending)
        for key in removed:
            self._validation.cancel(key)
            self._coordinator.validated_keys.discard(key)
            validations.pop(key, None)
            pending.pop(key, None)
            if not preserve_state:
                values.pop(key, None)
                dirty.pop(key, None)
                touched.pop(key, None)

        if preserve_state:
            values = snapshot.values
        self._store.commit(snapshot.with_recounted_counters(
            values=values, validations=validations, dirty=dirty, touched=touched,
            pending=pending, changed_fields=frozenset(removed),
        ))

    def is_field_registered(self, key: KeyLike) -> bool:
        return _key(key) in self._registry

    def get_field(self, key: KeyLike) -> Optional[FieldDefinition]:
        registered = self._registry.get(_key(key))
        return registered.definition if registered is not None else None

    @property
    def initial_values(self) -> Dict[str, Any]:
        return self._registry.initial_values

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, keys: Optional[Iterable[KeyLike]] = None) -> bool:
        """Validate keys (default: every field) regardless of mode.

        Returns True when none of them is invalid. Fields that pass the sync
        pass and have an async validator are left VALIDATING.
        """
        if not self._is_active("validate"):
            return False
        targets = [_key(k) for k in keys] if keys is not None else self._registry.keys()
        targets = [k for k in targets if k in self._registry]

        snapshot = self._store.snapshot
        view = BatchView(snapshot)
        async_keys = self._coordinator.stage_validations(view, targets)
        if view.validations is not snapshot.validations or async_keys:
            self._coordinator.commit_view(view, frozenset(targets), async_keys)

        current = self._store.snapshot
        if keys is None:
            return current.is_valid
        return all(current.validation(key).is_valid for key in targets)

    async def wait_for_validation(self) -> None:
        """Wait until every scheduled async validator has committed."""
        await self._validation.wait_for_tasks()

    def set_field_error(self, key: KeyLike, message: Optional[str]) -> None:
        """Force the field INVALID with message, or VALID when message is None."""
        key = _key(key)
        if not self._is_active("set_field_error"):
            return
        if key not in self._registry:
            logger.debug(f"set_field_error: '{key}' is not registered")
            return
        self._validation.cancel(key)
        result = ValidationResult.invalid(message) if message is not None else ValidationResult.VALID
        self._commit_validation(key, result)

    def set_field_validating(self, key: KeyLike, validating: bool = True) -> None:
        key = _key(key)
        if not self._is_active("set_field_validating"):
            return
        if key not in self._registry:
            logger.debug(f"set_field_validating: '{key}' is not registered")
            return
        current = self._store.snapshot.validation(key)
        if validating:
            result = ValidationResult.VALIDATING
        else:
            result = ValidationResult.VALID if current.is_validating else current
        self._commit_validation(key, result)

    def _commit_validation(self, key: str, result: ValidationResult) -> None:
        snapshot = self._store.snapshot
        view = BatchView(snapshot)
        if view.stage_validation(key, result):
            self._store.commit(view.build(changed_fields=frozenset([key])))

    def set_pending(self, key: KeyLike, pending: bool) -> None:
        """Flag an external operation in flight for the field."""
        key = _key(key)
        if not self._is_active("set_pending"):
            return
        snapshot = self._store.snapshot
        view = BatchView(snapshot)
        view.stage_pending(key, pending)
        if view.pending is not snapshot.pending:
            self._store.commit(view.build(changed_fields=frozenset([key])))

    def set_submitting(self, submitting: bool) -> None:
        if not self._is_active("set_submitting"):
            return
        snapshot = self._store.snapshot
        if snapshot.is_submitting != submitting:
            self._store.commit(replace(snapshot, is_submitting=submitting, changed_fields=frozenset()))

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def _reset_value(self, key: str, strategy: ResetStrategy) -> Any:
        initial = self._registry.initial_value(key)
        if strategy is ResetStrategy.INITIAL_VALUES:
            return initial
        return self._registry.get(key).empty_value(initial)

    def reset(self, strategy: ResetStrategy = ResetStrategy.INITIAL_VALUES) -> None:
        """Reset every field; clears dirty, touched, pending and is_submitting."""
        if not self._is_active("reset"):
            return
        self._validation.cancel_all()
        keys = self._registry.keys()
        snapshot = self._store.snapshot
        values = {key: self._reset_value(key, strategy) for key in keys}

        base = snapshot.with_recounted_counters(
            values=values,
            validations={},
            dirty={key: False for key in keys},
            touched={key: False for key in keys},
            pending={},
            is_submitting=False,
            reset_count=snapshot.reset_count + 1,
        )
        view = BatchView(base)
        self._coordinator.stage_validations(view, keys, run_async=False)
        self._coordinator.validated_keys.clear()
        self._coordinator.commit_view(view, None, ())
        logger.debug(f"RESET: {len(keys)} field(s) ({strategy.value})")
        self._persist_values(values)

    def reset_fields(self, keys: Iterable[KeyLike], strategy: ResetStrategy = ResetStrategy.INITIAL_VALUES) -> None:
        """Reset only keys, leaving the rest of the form untouched."""
        if not self._is_active("reset_fields"):
            return
        snapshot = self._store.snapshot
        view = BatchView(snapshot)
        reset_keys: List[str] = []
        for key in (_key(k) for k in keys):
            if key not in self._registry:
                continue
            self._validation.cancel(key)
            value = self._reset_value(key, strategy)
            if key not in view.values or view.values[key] != value:
                view.stage_value(key, value)
            view.stage_dirty(key, self._coordinator.compute_dirty(key, value))
            view.stage_touched(key, False)
            view.stage_pending(key, False)
            reset_keys.append(key)
        if not reset_keys:
            return

        self._coordinator.stage_validations(view, reset_keys, run_async=False)
        self._coordinator.validated_keys.difference_update(reset_keys)
        self._coordinator.commit_view(view, frozenset(reset_keys), ())
        if view.values is not snapshot.values:
            self._persist_values(view.values)

    def reset_to_values(self, values: Mapping[str, Any]) -> None:
        """Make values the new initial values and reset the form to them."""
        self._registry.set_global_initial_values(values)
        for key, value in values.items():
            if key in self._registry:
                self._registry.set_initial_value(key, value)
        self.reset(ResetStrategy.INITIAL_VALUES)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> Optional[HistoryManager]:
        return self._history

    @property
    def can_undo(self) -> bool:
        return self._history is not None and self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history is not None and self._history.can_redo

    def undo(self) -> bool:
        if self._history is None or not self._is_active("undo"):
            return False
        return self._history.undo()

    def redo(self) -> bool:
        if self._history is None or not self._is_active("redo"):
            return False
        return self._history.redo()

    def _require_history(self) -> HistoryManager:
        if self._history is None:
            raise FormStateError("history recording is disabled (record_history=False)")
        return self._history

    def export_history(self) -> Dict[str, Any]:
        return self._require_history().export_to_dict()

    def import_history(self, data: Dict[str, Any]) -> None:
        """Replace the undo/redo history with exported data.

        State for keys that are not registered in this engine is dropped.
        The entry at the exported cursor is published.
        """
        if not self._is_active("import_history"):
            return
        self._require_history().import_from_dict(data, keep=self._registry.__contains__)

    def save_history(self, filepath: Union[str, Path]) -> None:
        self._require_history().save_to_file(filepath)

    def load_history(self, filepath: Union[str, Path]) -> None:
        if not self._is_active("load_history"):
            return
        self._require_history().load_from_file(filepath, keep=self._registry.__contains__)

    def _on_history_restored(self, snapshot: FormSnapshot) -> None:
        self._validation.cancel_all()
        orphaned: List[str] = []
        for key, result in snapshot.validations.items():
            if not result.is_validating:
                continue
            if not self._validation.schedule_async(key, snapshot.values.get(key), already_marked=True):
                orphaned.append(key)
        if orphaned:
            # No task can finish these, so they fall back to their sync state
            view = BatchView(self._store.snapshot)
            for key in orphaned:
                view.stage_validation(key, ValidationResult.VALID)
            self._store.commit(view.build(changed_fields=frozenset(orphaned)))

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        on_valid: Callable[[Dict[str, Any]], Any],
        on_error: Optional[Callable[[Dict[str, ValidationResult]], None]] = None,
        debounce: Optional[float] = None,
        throttle: Optional[float] = None,
        optimistic: bool = False,
        wait_for_pending: bool = True,
    ) -> bool:
        """Validate and, when valid, call on_valid(values).

        throttle: seconds; calls within the window after an accepted call
                  return False immediately (first wins).
        debounce: seconds; a newer call supersedes a waiting one, which
                  returns False without running (last wins).
        optimistic: make the current values the new initial values before
                    on_valid runs; restore the previous state if it raises.
        wait_for_pending: wait for async validation and pending flags to
                          settle, then re-check validity.

        Returns True when on_valid completed. Exceptions from on_valid
        propagate. Disposing the engine while submit waits for pending
        fields raises EngineDisposedError.
        """
        self._ensure_active()

        if throttle is not None:
            now = time.monotonic()
            if self._last_submit_time is not None and now - self._last_submit_time < throttle:
                logger.debug("SUBMIT: throttled")
                return False
            self._last_submit_time = now

        if debounce is None:
            return await self._perform_submit(on_valid, on_error, optimistic, wait_for_pending)

        previous = self._submit_debounce_task
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.get_running_loop().create_task(
            self._debounced_submit(debounce, on_valid, on_error, optimistic, wait_for_pending)
        )
        self._submit_debounce_task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._submit_debounce_task is not task:
                logger.debug("SUBMIT: superseded by a newer call")
                return False
            raise
        finally:
            if self._submit_debounce_task is task:
                self._submit_debounce_task = None

    async def _debounced_submit(self, delay: float, on_valid, on_error, optimistic: bool,
                                wait_for_pending: bool) -> bool:
        await asyncio.sleep(delay)
        # Past the debounce window: a newer call no longer cancels this one
        if self._submit_debounce_task is asyncio.current_task():
            self._submit_debounce_task = None
        return await self._perform_submit(on_valid, on_error, optimistic, wait_for_pending)

    async def _perform_submit(self, on_valid, on_error, optimistic: bool, wait_for_pending: bool) -> bool:
        if not self.validate():
            self._report_invalid(on_error)
            return False

        self.set_submitting(True)
        if wait_for_pending and self._store.snapshot.is_pending:
            logger.debug(f"SUBMIT: waiting for {self._store.snapshot.pending_count} pending field(s)")
            await self._store.wait_until(lambda s: not s.is_pending)
            if not self._store.snapshot.is_valid:
                self.set_submitting(False)
                self._report_invalid(on_error)
                return False

        saved_initials = None
        saved_snapshot = None
        if optimistic:
            saved_initials = self._registry.save_initial_state()
            saved_snapshot = self._store.snapshot
            self.reset_to_values(dict(saved_snapshot.values))
            self.set_submitting(True)

        try:
            outcome = on_valid(dict(self._store.snapshot.values))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            if optimistic:
                logger.debug(f"SUBMIT: reverting optimistic state after error: {e}")
                self._registry.restore_initial_state(saved_initials)
                self._store.commit(replace(saved_snapshot, is_submitting=False, changed_fields=None))
            raise
        finally:
            self.set_submitting(False)
        return True

    def _report_invalid(self, on_error) -> None:
        validations = dict(self._store.snapshot.validations)
        logger.debug(f"SUBMIT: form invalid ({self._store.snapshot.error_count} error(s))")
        if on_error is not None:
            on_error(validations)

    # ------------------------------------------------------------------
    # Optimistic updates
    # ------------------------------------------------------------------

    async def optimistic_update(
        self,
        key: KeyLike,
        value: Any,
        action: Callable[[], Awaitable[Any]],
        revert_on_error: bool = True,
    ) -> None:
        """Write value now, flag the field pending while action runs.

        If action raises, the previous value is written back (when
        revert_on_error and it was not None) and the exception propagates.
        """
        self._ensure_active()
        key = _key(key)
        previous = self.get_value(key)
        self.set_value(key, value)
        self.set_pending(key, True)
        try:
            await action()
        except Exception:
            if revert_on_error and previous is not None:
                self.set_value(key, previous)
            raise
        finally:
            if not self._disposed:
                self.set_pending(key, False)

    # ------------------------------------------------------------------
    # Arrays
    # ------------------------------------------------------------------

    def add_array_item(self, key: KeyLike, item: Any) -> Optional[BatchResult]:
        current = self.get_value(key) or []
        return self.set_value(key, list(current) + [item])

    def remove_array_item_at(self, key: KeyLike, index: int) -> Optional[BatchResult]:
        current = self.get_value(key)
        if current is None or not 0 <= index < len(current):
            return None
        items = list(current)
        del items[index]
        return self.set_value(key, items)

    def replace_array_item(self, key: KeyLike, index: int, item: Any) -> Optional[BatchResult]:
        current = self.get_value(key)
        if current is None or not 0 <= index < len(current):
            return None
        items = list(current)
        items[index] = item
        return self.set_value(key, items)

    def move_array_item(self, key: KeyLike, old_index: int, new_index: int) -> Optional[BatchResult]:
        current = self.get_value(key)
        if current is None or not 0 <= old_index < len(current) or not 0 <= new_index < len(current):
            return None
        items = list(current)
        items.insert(new_index, items.pop(old_index))
        return self.set_value(key, items)

    def clear_array(self, key: KeyLike) -> Optional[BatchResult]:
        return self.set_value(key, [])

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call listener with every committed snapshot; returns an unsubscribe callable."""
        return self._store.subscribe(listener)

    async def wait_until(self, predicate: Callable[[FormSnapshot], bool]) -> FormSnapshot:
        return await self._store.wait_until(predicate)

    def add_field_listener(self, key: KeyLike, listener: FieldListener) -> None:
        """Call listener(value) whenever the field's value changes."""
        listeners = self._field_listeners.setdefault(_key(key), [])
        if listener not in listeners:
            listeners.append(listener)

    def remove_field_listener(self, key: KeyLike, listener: FieldListener) -> None:
        listeners = self._field_listeners.get(_key(key))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def _dispatch_field_listeners(self, snapshot: FormSnapshot) -> None:
        previous = self._last_published
        self._last_published = snapshot
        if not self._field_listeners or snapshot.values is previous.values:
            return

        candidates = self._field_listeners.keys()
        if snapshot.changed_fields is not None:
            candidates = [key for key in candidates if key in snapshot.changed_fields]

        for key in list(candidates):
            old = previous.values.get(key)
            new = snapshot.values.get(key)
            if old is new or old == new:
                continue
            for listener in list(self._field_listeners.get(key, ())):
                try:
                    listener(new)
                except Exception as e:
                    logger.warning(f"Field listener for '{key}' failed: {e}")

    def bind_field(self, target_key: KeyLike, source: 'FormEngine', source_key: KeyLike,
                   two_way: bool = False) -> Callable[[], None]:
        """Mirror source[source_key] into this engine's target_key.

        Returns a callable that removes the binding.
        """
        return self._bindings.bind(_key(target_key), source, _key(source_key), two_way)

    @property
    def binding_count(self) -> int:
        return self._bindings.active_count

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"PERSIST: no running event loop, skipping {label}")
            coro.close()
            return
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _persist_values(self, values: Mapping[str, Any]) -> None:
        if self.persistence is None or self.form_id is None or not self.config.persist_on_change:
            return
        self._spawn(self._save(dict(values)), "save")

    async def _save(self, values: Dict[str, Any]) -> None:
        try:
            await self.persistence.save(self.form_id, values)
        except Exception as e:
            logger.warning(f"PERSIST: failed to save form '{self.form_id}': {e}")

    async def restore(self) -> bool:
        """Load persisted values into registered fields.

        Dirty flags are computed against the recorded initial values and the
        restored fields are validated (sync). The loaded state becomes the
        history baseline. Returns False when nothing was stored.
        """
        if self.persistence is None or self.form_id is None:
            return False
        try:
            saved = await self.persistence.load(self.form_id)
        except Exception as e:
            logger.warning(f"PERSIST: failed to load form '{self.form_id}': {e}")
            return False
        if not saved or self._disposed:
            return False

        snapshot = self._store.snapshot
        view = BatchView(snapshot)
        restored: List[str] = []
        for key, value in saved.items():
            if key not in self._registry:
                logger.debug(f"PERSIST: ignoring saved value for unregistered '{key}'")
                continue
            self._validation.cancel(key)
            view.stage_value(key, value)
            view.stage_dirty(key, self._coordinator.compute_dirty(key, value))
            restored.append(key)
        if not restored:
            return False

        self._coordinator.stage_validations(view, restored, run_async=False)
        self._coordinator.commit_view(view, frozenset(restored), ())
        if self._history is not None:
            self._history.clear()
        logger.info(f"PERSIST: restored {len(restored)} value(s) for form '{self.form_id}'")
        return True

    async def clear_persisted_state(self) -> None:
        if self.persistence is None or self.form_id is None:
            return
        await self.persistence.clear(self.form_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _is_active(self, operation: str) -> bool:
        if self._disposed:
            logger.debug(f"{operation}: engine disposed, ignoring")
            return False
        return True

    def _ensure_active(self) -> None:
        if self._disposed:
            raise EngineDisposedError("FormEngine has been disposed")

    def dispose(self) -> None:
        """Cancel async work and drop every subscription. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        self._validation.dispose()
        if self._submit_debounce_task is not None and not self._submit_debounce_task.done():
            self._submit_debounce_task.cancel()
        self._bindings.unbind_all()
        if self._history is not None:
            self._history.dispose()
        self._field_listeners.clear()
        self._store.dispose()
        logger.info(f"FormEngine disposed (form_id={self.form_id})")

    def __enter__(self) -> 'FormEngine':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
