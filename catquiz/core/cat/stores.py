"""
Collaborator interfaces and in-memory implementations.

The engine reads responses and item parameters and writes abilities through
these interfaces only. The in-memory implementations are thread-safe and
serve tests and single-process hosts; a database-backed host implements the
same protocols.
"""
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple, TypeVar

from catquiz.core.cat.calibration import select_item_parameters
from catquiz.core.cat.irt_models import ModelRegistry
from catquiz.schemas.irt import ItemParameter, PersonParameter, ResponseRecord, ResponseSet

T = TypeVar("T")


class ResponseRepository(Protocol):
    """Source of a person's responses."""

    def get_responses(
        self, person_id: int, item_ids: Optional[Iterable[str]] = None
    ) -> ResponseSet:
        ...


class ItemParameterStore(Protocol):
    """Source and sink of item parameters."""

    def get_item_parameters(self, item_ids: Iterable[str]) -> Dict[str, ItemParameter]:
        ...

    def save(self, item: ItemParameter) -> None:
        ...


class PersonAbilityStore(Protocol):
    """Source and sink of ability estimates keyed by (person, scale)."""

    def get(self, person_id: int, scale_id: int) -> Optional[PersonParameter]:
        ...

    def get_all(self, person_id: int) -> Dict[int, PersonParameter]:
        ...

    def save(self, parameter: PersonParameter) -> None:
        ...


class InMemoryResponseRepository:
    """
    Keeps the latest response per (person, item).

    Thread-safe with a lock around every access.
    """

    def __init__(self, records: Iterable[ResponseRecord] = ()):
        self._data: Dict[Tuple[int, str], ResponseRecord] = {}
        self._lock = threading.RLock()
        for record in records:
            self.add(record)

    def add(self, record: ResponseRecord) -> None:
        """Store a response, replacing an earlier answer to the same item."""
        with self._lock:
            self._data[(record.person_id, record.item_id)] = record

    def record(
        self,
        person_id: int,
        item_id: str,
        fraction: float,
        timestamp: Optional[datetime] = None,
    ) -> ResponseRecord:
        """
        Ingest a raw answer and store it.

        Raises:
            PartialResponseError: If ``fraction`` is neither 0 nor 1.
        """
        response = ResponseRecord.from_fraction(person_id, item_id, fraction, timestamp)
        self.add(response)
        return response

    def get_responses(
        self, person_id: int, item_ids: Optional[Iterable[str]] = None
    ) -> ResponseSet:
        wanted = None if item_ids is None else set(item_ids)
        with self._lock:
            records = [
                record
                for (pid, item_id), record in self._data.items()
                if pid == person_id and (wanted is None or item_id in wanted)
            ]
        return ResponseSet(sorted(records, key=lambda r: r.timestamp))

    def all_responses(self) -> ResponseSet:
        with self._lock:
            return ResponseSet(self._data.values())

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class InMemoryItemParameterStore:
    """
    Item parameters per (model, item).

    ``get_item_parameters`` resolves one record per item across models with
    select_item_parameters.
    """

    def __init__(
        self,
        items: Iterable[ItemParameter] = (),
        registry: Optional[ModelRegistry] = None,
    ):
        self._data: Dict[Tuple[str, str], ItemParameter] = {}
        self._registry = registry
        self._lock = threading.RLock()
        for item in items:
            self.save(item)

    def save(self, item: ItemParameter) -> None:
        with self._lock:
            self._data[(item.model, item.item_id)] = item

    def get(self, model: str, item_id: str) -> Optional[ItemParameter]:
        with self._lock:
            return self._data.get((model, item_id))

    def get_by_model(self, model: str) -> List[ItemParameter]:
        with self._lock:
            return [item for (m, _), item in self._data.items() if m == model]

    def get_item_parameters(self, item_ids: Iterable[str]) -> Dict[str, ItemParameter]:
        wanted = set(item_ids)
        by_model: Dict[str, List[ItemParameter]] = {}
        with self._lock:
            for (model, item_id), item in self._data.items():
                if item_id in wanted:
                    by_model.setdefault(model, []).append(item)
        return select_item_parameters(by_model, registry=self._registry)


class InMemoryPersonAbilityStore:
    """Ability estimates per (person, scale), overwritten on every save."""

    def __init__(self):
        self._data: Dict[Tuple[int, int], PersonParameter] = {}
        self._lock = threading.RLock()

    def get(self, person_id: int, scale_id: int) -> Optional[PersonParameter]:
        with self._lock:
            return self._data.get((person_id, scale_id))

    def get_all(self, person_id: int) -> Dict[int, PersonParameter]:
        with self._lock:
            return {
                scale_id: parameter
                for (pid, scale_id), parameter in self._data.items()
                if pid == person_id
            }

    def save(self, parameter: PersonParameter) -> None:
        with self._lock:
            self._data[(parameter.person_id, parameter.scale_id)] = parameter


class AttemptStateCache:
    """
    Attempt state keyed by attempt id.

    ``update`` runs a read-modify-write under a lock of its own attempt, so
    two calls for the same attempt never interleave while calls for
    different attempts run side by side.
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._attempt_locks: Dict[str, Any] = {}

    def _attempt_lock(self, attempt_id: str):
        with self._lock:
            lock = self._attempt_locks.get(attempt_id)
            if lock is None:
                lock = self._attempt_locks[attempt_id] = threading.RLock()
            return lock

    def get(self, attempt_id: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(attempt_id)

    def set(self, attempt_id: str, state: Any) -> None:
        with self._lock:
            self._data[attempt_id] = state

    def delete(self, attempt_id: str) -> None:
        with self._attempt_lock(attempt_id):
            with self._lock:
                self._data.pop(attempt_id, None)
                self._attempt_locks.pop(attempt_id, None)

    def update(self, attempt_id: str, fn: Callable[[Any], T]) -> T:
        """
        Apply ``fn`` to the stored state while holding the attempt's lock.

        ``fn`` may mutate the state in place; its return value is passed
        through.

        Raises:
            KeyError: If no state is stored for ``attempt_id``.
        """
        with self._attempt_lock(attempt_id):
            with self._lock:
                state = self._data[attempt_id]
            value = fn(state)
            with self._lock:
                self._data[attempt_id] = state
            return value
