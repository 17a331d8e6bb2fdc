"""
HistoryManager: bounded, linear undo/redo over published snapshots.

Every commit is observed; an entry is recorded only when the commit carries a
new values map (validation-only, touched-only and pending-only commits share
the previous values map by reference and are skipped). Recording while the
cursor is behind the head discards the redo branch.
"""
from dataclasses import replace
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from formstate.snapshot_model import FormSnapshot
from formstate.state_store import StateStore

logger = logging.getLogger(__name__)


class HistoryManager:

    def __init__(
        self,
        store: StateStore,
        limit: int = 50,
        on_restored: Optional[Callable[[FormSnapshot], None]] = None,
    ):
        self._store = store
        self._limit = limit
        self._on_restored = on_restored
        self._entries: List[FormSnapshot] = [store.snapshot]
        self._index = 0
        self._restoring = False
        self._unsubscribe = store.subscribe(self.record)

    @property
    def entries(self) -> List[FormSnapshot]:
        return list(self._entries)

    @property
    def index(self) -> int:
        return self._index

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def is_restoring(self) -> bool:
        return self._restoring

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def record(self, snapshot: FormSnapshot) -> None:
        """Store listener: append snapshot when its values map is new."""
        if self._restoring:
            return
        if snapshot.values is self._entries[self._index].values:
            return

        if self.can_redo:
            discarded = len(self._entries) - self._index - 1
            del self._entries[self._index + 1:]
            logger.debug(f"HISTORY: discarded {discarded} redo entr{'y' if discarded == 1 else 'ies'}")

        self._entries.append(snapshot)
        if len(self._entries) > self._limit:
            self._entries.pop(0)
        else:
            self._index += 1

    def undo(self) -> bool:
        if not self.can_undo:
            logger.debug("HISTORY: nothing to undo")
            return False
        self._restore(self._index - 1)
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            logger.debug("HISTORY: nothing to redo")
            return False
        self._restore(self._index + 1)
        return True

    def _restore(self, index: int) -> None:
        self._index = index
        entry = self._entries[index]
        restored = replace(entry, changed_fields=None)
        self._restoring = True
        try:
            self._store.commit(restored)
        finally:
            self._restoring = False
        logger.debug(f"HISTORY: restored entry {index + 1}/{len(self._entries)}")
        if self._on_restored is not None:
            self._on_restored(restored)

    def clear(self, baseline: Optional[FormSnapshot] = None) -> None:
        """Drop every entry; the baseline (default: current snapshot) becomes entry 0."""
        self._entries = [baseline if baseline is not None else self._store.snapshot]
        self._index = 0

    def dispose(self) -> None:
        self._unsubscribe()
        self._entries = [self._entries[self._index]]
        self._index = 0

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_to_dict(self) -> Dict[str, Any]:
        """Export entries and cursor to a JSON-serializable dict.

        Returns:
            Dict with 'entries' (FormSnapshot.to_dict() each), 'index' and 'limit'.
        """
        return {
            'entries': [entry.to_dict() for entry in self._entries],
            'index': self._index,
            'limit': self._limit,
        }

    def import_from_dict(self, data: Dict[str, Any], keep: Optional[Callable[[str], bool]] = None) -> None:
        """Replace the history with exported data and publish the entry at its cursor.

        Args:
            data: Dict produced by export_to_dict().
            keep: Optional key filter; state for rejected keys is dropped from
                  every entry (fields that no longer exist in the form).
        """
        entries = [FormSnapshot.from_dict(entry) for entry in data['entries']]
        if not entries:
            raise ValueError("history export contains no entries")
        if keep is not None:
            entries = [_filter_keys(entry, keep) for entry in entries]
        index = data.get('index', len(entries) - 1)
        # Over the limit: keep the newest entries and shift the cursor with them
        dropped = max(len(entries) - self._limit, 0)
        entries = entries[dropped:]
        index = min(max(index - dropped, 0), len(entries) - 1)

        self._entries = entries
        self._restore(index)
        logger.info(f"HISTORY: imported {len(entries)} entries (cursor {index})")

    def save_to_file(self, filepath: Union[str, Path]) -> None:
        data = self.export_to_dict()
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)
        logger.info(f"HISTORY: saved {len(self._entries)} entries to {filepath}")

    def load_from_file(self, filepath: Union[str, Path], keep: Optional[Callable[[str], bool]] = None) -> None:
        with open(filepath, 'r') as f:
            data = json.load(f)
        self.import_from_dict(data, keep=keep)


def _filter_keys(snapshot: FormSnapshot, keep: Callable[[str], bool]) -> FormSnapshot:
    def only(mapping):
        return {k: v for k, v in mapping.items() if keep(k)}

    return snapshot.with_recounted_counters(
        values=only(snapshot.values),
        validations=only(snapshot.validations),
        dirty=only(snapshot.dirty),
        touched=only(snapshot.touched),
        pending=only(snapshot.pending),
    )
