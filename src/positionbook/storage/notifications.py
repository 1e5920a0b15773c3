"""In-process change notifications for persisted collections."""

from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class ChangeEvent:
    """A collection was written to the primary store."""

    collection: str
    value: Any


ChangeObserver = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Synchronous fan-out of change events to any number of observers.

    Delivery is best effort: an observer that raises is reported and
    skipped, and late subscribers do not receive earlier events.
    """

    def __init__(self):
        self._observers: list[ChangeObserver] = []

    def subscribe(self, observer: ChangeObserver) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, collection: str, value: Any) -> ChangeEvent:
        event = ChangeEvent(collection=collection, value=value)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                print(f"[Storage] Change observer failed for '{collection}': {e}", flush=True)
        return event

    def __len__(self) -> int:
        return len(self._observers)
