"""
BindingManager: mirror a field from another engine into this one.

The only loop prevention is the inequality guard: a side is written only
when the other side's value differs from its own current value.
"""
import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

from formstate.snapshot_model import FormSnapshot

if TYPE_CHECKING:
    from formstate.engine import FormEngine

logger = logging.getLogger(__name__)

BindingKey = Tuple[str, int, str]


class BindingManager:

    def __init__(self, owner: 'FormEngine'):
        self._owner = owner
        self._bindings: Dict[BindingKey, List[Callable[[], None]]] = {}

    def bind(self, target_key: str, source: 'FormEngine', source_key: str, two_way: bool = False) -> Callable[[], None]:
        """Keep owner[target_key] equal to source[source_key].

        Returns a callable that removes the binding. Binding the same pair
        again replaces the previous subscriptions.
        """
        binding_key: BindingKey = (target_key, id(source), source_key)
        self._remove(binding_key)

        owner = self._owner

        def forward(snapshot: FormSnapshot) -> None:
            if snapshot.changed_fields is not None and source_key not in snapshot.changed_fields:
                return
            value = snapshot.value(source_key)
            if value != owner.get_value(target_key):
                logger.debug(f"BINDING: '{source_key}' -> '{target_key}'")
                owner.set_value(target_key, value)

        unsubscribes = [source.subscribe(forward)]

        if two_way:
            def backward(snapshot: FormSnapshot) -> None:
                if snapshot.changed_fields is not None and target_key not in snapshot.changed_fields:
                    return
                value = snapshot.value(target_key)
                if value != source.get_value(source_key):
                    logger.debug(f"BINDING: '{target_key}' -> '{source_key}' (reverse)")
                    source.set_value(source_key, value)

            unsubscribes.append(owner.subscribe(backward))

        self._bindings[binding_key] = unsubscribes
        return lambda: self._remove(binding_key)

    def _remove(self, binding_key: BindingKey) -> None:
        for unsubscribe in self._bindings.pop(binding_key, ()):
            unsubscribe()

    def unbind_all(self) -> None:
        for binding_key in list(self._bindings):
            self._remove(binding_key)

    @property
    def active_count(self) -> int:
        return len(self._bindings)
