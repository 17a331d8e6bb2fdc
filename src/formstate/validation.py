"""
ValidationEngine: synchronous validation and debounced async validation tasks.

Sync validation runs inside a batch against a read-only view and never
raises: validator exceptions become INVALID results. Async validation runs as
one asyncio task per field key. Scheduling a key again cancels its previous
task (replaced, not queued), and each task ends with exactly one commit that
moves the field out of VALIDATING with counter deltas.
"""
import asyncio
import logging
import time
from typing import Any, Dict

from formstate.config import FormEngineConfig
from formstate.field_definition import RegisteredField
from formstate.messages import FormMessages
from formstate.registry import FieldRegistry
from formstate.state_store import StateStore
from formstate.validation_result import ValidationResult, ValidationStatus

logger = logging.getLogger(__name__)

__all__ = ['ValidationEngine', 'ValidationResult', 'ValidationStatus']


class ValidationEngine:

    def __init__(
        self,
        registry: FieldRegistry,
        store: StateStore,
        messages: FormMessages,
        config: FormEngineConfig,
    ):
        self._registry = registry
        self._store = store
        self._messages = messages
        self._config = config
        self._tasks: Dict[str, asyncio.Task] = {}
        self._durations: Dict[str, float] = {}
        self._disposed = False

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_validate(self, field: RegisteredField, value: Any, view: Any) -> ValidationResult:
        """Run the field's validator, then its cross-field validator.

        The first non-None error wins and is resolved through the message
        formatter with {label} and {value} available as placeholders.
        """
        started = time.perf_counter()
        try:
            try:
                error = field.validate(value)
            except Exception as e:
                logger.warning(f"VALIDATE: validator for '{field.key}' raised: {e}")
                return ValidationResult.invalid(f"Validation error: {e}")

            if error is None:
                try:
                    error = field.cross_validate(value, view)
                except Exception as e:
                    logger.warning(f"VALIDATE: cross-field validator for '{field.key}' raised: {e}")
                    return ValidationResult.invalid(f"Cross-validation error: {e}")

            if error is None:
                return ValidationResult.VALID
            return ValidationResult.invalid(self._resolve(field, error, value))
        finally:
            self._durations[field.key] = time.perf_counter() - started

    def _resolve(self, field: RegisteredField, error: str, value: Any) -> str:
        try:
            return self._messages.resolve(error, {'label': field.label, 'value': value})
        except Exception as e:
            logger.warning(f"VALIDATE: message for '{field.key}' could not be resolved, keeping '{error}': {e}")
            return error

    @property
    def durations(self) -> Dict[str, float]:
        """key -> seconds spent in the last sync validation of that key."""
        return dict(self._durations)

    # ------------------------------------------------------------------
    # Async
    # ------------------------------------------------------------------

    @staticmethod
    def can_schedule() -> bool:
        """Async validation needs a running event loop."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def schedule_async(self, key: str, value: Any, already_marked: bool = False) -> bool:
        """Start (or restart) the async validator for key.

        Unless already_marked, commits the VALIDATING transition first.
        Returns False when nothing was scheduled.
        """
        if self._disposed:
            return False
        field = self._registry.get(key)
        if field is None or not field.has_async_validator:
            return False
        if not self.can_schedule():
            logger.debug(f"ASYNC: no running event loop, '{key}' keeps its sync result")
            return False

        self.cancel(key)

        if not already_marked:
            self._commit_result(key, ValidationResult.VALIDATING)

        task = asyncio.get_running_loop().create_task(self._run(key, field, value))
        self._tasks[key] = task
        logger.debug(f"ASYNC: scheduled '{key}' (debounce={field.debounce}s)")
        return True

    async def _run(self, key: str, field: RegisteredField, value: Any) -> None:
        if field.debounce > 0:
            await asyncio.sleep(field.debounce)

        try:
            error = await field.async_validate(value)
            if error is None:
                result = ValidationResult.VALID
            else:
                result = ValidationResult.invalid(self._resolve(field, error, value))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"ASYNC: validator for '{key}' raised: {e}")
            result = ValidationResult.invalid(f"Async validation error: {e}")

        if self._is_stale(key, field):
            logger.debug(f"ASYNC: dropping stale result for '{key}'")
            return
        self._tasks.pop(key, None)
        self._commit_result(key, result)

    def _is_stale(self, key: str, field: RegisteredField) -> bool:
        if self._disposed or self._store.is_disposed:
            return True
        if self._registry.get(key) is not field:
            return True
        return self._tasks.get(key) is not asyncio.current_task()

    def _commit_result(self, key: str, result: ValidationResult) -> None:
        snapshot = self._store.snapshot
        old = snapshot.validations.get(key)
        if old == result:
            return
        counters = snapshot.counters()
        counters.track_validation(old, result)
        validations = dict(snapshot.validations)
        validations[key] = result
        self._store.commit(snapshot.with_counters(
            counters, validations=validations, changed_fields=frozenset([key])
        ))

    def cancel(self, key: str) -> bool:
        """Cancel key's in-flight task. Its VALIDATING state is left to the caller."""
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
            logger.debug(f"ASYNC: cancelled '{key}'")
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def has_task(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    @property
    def task_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def wait_for_tasks(self) -> None:
        """Wait until no async validation task is outstanding.

        Tasks started while waiting are awaited too.
        """
        while True:
            tasks = [task for task in self._tasks.values() if not task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def dispose(self) -> None:
        self._disposed = True
        self.cancel_all()
