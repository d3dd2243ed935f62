"""Last-value broadcast signal for session state."""

from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")

Subscriber = Callable[[T], None]


class StateSignal(Generic[T]):
    """
    Holds the latest value and pushes changes to subscribers.

    New subscribers receive the current value immediately. Publishing the
    value already held does not notify anyone.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: List[Subscriber[T]] = []

    @property
    def value(self) -> T:
        return self._value

    def publish(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for subscriber in list(self._subscribers):
            subscriber(value)

    def subscribe(self, subscriber: Subscriber[T]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(subscriber)
        subscriber(self._value)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe
