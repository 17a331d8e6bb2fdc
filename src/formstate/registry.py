"""
FieldRegistry: the set of registered fields, their recorded initial values,
and the dependency edges they declare.

Registration compiles each FieldDefinition into a RegisteredField once. The
registry also owns the runtime type check applied at the batch boundary.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from formstate.config import FormEngineConfig
from formstate.dependency_graph import DependencyGraph
from formstate.enums import InitialValueStrategy
from formstate.field_definition import FieldDefinition, RegisteredField

logger = logging.getLogger(__name__)


class FieldRegistry:
    """Registered fields keyed by field key.

    Args:
        graph: Dependency graph kept in sync with each field's depends_on.
        config: Engine config used to resolve INHERIT modes and debounce.
        global_initial_values: Initial values supplied by the engine owner
                               (constructor or reset_to_values). For a newly
                               registered key these win over the definition's.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        config: FormEngineConfig,
        global_initial_values: Optional[Mapping[str, Any]] = None,
    ):
        self._graph = graph
        self._config = config
        self._fields: Dict[str, RegisteredField] = {}
        self._initial_values: Dict[str, Any] = {}
        self._global_initial_values: Dict[str, Any] = dict(global_initial_values or {})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, definitions: Iterable[FieldDefinition]) -> List[Tuple[RegisteredField, bool]]:
        """Register or replace definitions.

        Returns (registered_field, is_new) per definition, in input order.
        """
        results: List[Tuple[RegisteredField, bool]] = []
        for definition in definitions:
            key = definition.key
            previous = self._fields.get(key)
            if previous is not None:
                self._graph.remove_edges(key, previous.depends_on)

            registered = RegisteredField.compile(definition, self._config)
            self._fields[key] = registered
            self._graph.add_edges(key, registered.depends_on)

            is_new = previous is None
            self._record_initial_value(definition, is_new)
            results.append((registered, is_new))
            logger.debug(
                f"REGISTER: '{key}' ({'new' if is_new else 'replaced'}, mode={registered.mode.value}, "
                f"depends_on={list(registered.depends_on)})"
            )
        return results

    def _record_initial_value(self, definition: FieldDefinition, is_new: bool) -> None:
        key = definition.key
        if is_new and key not in self._initial_values:
            if key in self._global_initial_values:
                self._initial_values[key] = self._global_initial_values[key]
            else:
                self._initial_values[key] = definition.initial_value
            return

        if definition.initial_value is None:
            return
        if definition.initial_value_strategy is InitialValueStrategy.PREFER_LOCAL:
            self._initial_values[key] = definition.initial_value
        else:
            logger.debug(f"REGISTER: '{key}' keeps recorded initial value (PREFER_GLOBAL)")

    def unregister(self, keys: Iterable[str]) -> List[str]:
        """Remove definitions and the edges they declared. Returns removed keys.

        Edges other fields declared towards a removed key stay in the graph,
        so re-registering the key restores propagation to them.
        """
        removed: List[str] = []
        for key in keys:
            registered = self._fields.pop(key, None)
            if registered is None:
                continue
            self._graph.remove_edges(key, registered.depends_on)
            self._initial_values.pop(key, None)
            removed.append(key)
            logger.debug(f"UNREGISTER: '{key}'")
        return removed

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[RegisteredField]:
        return self._fields.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def keys(self) -> List[str]:
        return list(self._fields)

    def fields(self) -> List[RegisteredField]:
        return list(self._fields.values())

    @property
    def initial_values(self) -> Dict[str, Any]:
        """Copy of key -> recorded initial value."""
        return dict(self._initial_values)

    def initial_value(self, key: str) -> Any:
        return self._initial_values.get(key)

    def set_initial_value(self, key: str, value: Any) -> None:
        self._initial_values[key] = value

    def set_global_initial_values(self, values: Mapping[str, Any]) -> None:
        """Merge owner-supplied initial values (reset_to_values)."""
        self._global_initial_values.update(values)

    def save_initial_state(self) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Copy of (recorded, global) initial values for restore_initial_state()."""
        return dict(self._initial_values), dict(self._global_initial_values)

    def restore_initial_state(self, state: Tuple[Dict[str, Any], Dict[str, Any]]) -> None:
        recorded, global_values = state
        for key in self._fields:
            if key in recorded:
                self._initial_values[key] = recorded[key]
        self._global_initial_values = dict(global_values)

    # ------------------------------------------------------------------
    # Type checks
    # ------------------------------------------------------------------

    def expected_type(self, key: str) -> Optional[type]:
        """Declared value_type, else the type of the recorded initial value."""
        registered = self._fields.get(key)
        if registered is None:
            return None
        if registered.definition.value_type is not None:
            return registered.definition.value_type
        initial = self._initial_values.get(key)
        return type(initial) if initial is not None else None

    @staticmethod
    def is_type_compatible(expected: Optional[type], value: Any) -> bool:
        """None and unknown expectations are always compatible.

        int and float accept each other; bool is not treated as a number.
        """
        if expected is None or value is None:
            return True
        if expected is bool:
            return isinstance(value, bool)
        if isinstance(value, bool):
            return not _is_numeric_type(expected) and isinstance(value, expected)
        if _is_numeric_type(expected) and isinstance(value, (int, float)):
            return True
        return isinstance(value, expected)


def _is_numeric_type(tp: type) -> bool:
    return tp in (int, float)
