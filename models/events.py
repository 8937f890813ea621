"""Observer hooks for simulation lifecycle notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

LOGGER = logging.getLogger(__name__)

SIMULATION_STARTED = "simulationStarted"
SIMULATION_COMPLETED = "simulationCompleted"
MONTE_CARLO_STARTED = "monteCarloStarted"
MONTE_CARLO_PROGRESS = "monteCarloProgress"
MONTE_CARLO_COMPLETED = "monteCarloCompleted"

EVENTS = (
    SIMULATION_STARTED,
    SIMULATION_COMPLETED,
    MONTE_CARLO_STARTED,
    MONTE_CARLO_PROGRESS,
    MONTE_CARLO_COMPLETED,
)

Listener = Callable[[dict], None]


class EventHooks:
    """
    Advisory listeners keyed by event name.

    Listener failures are logged and swallowed so that no observer can
    change the outcome of a simulation.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r}; expected one of {EVENTS}")
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def emit(self, event: str, payload: dict) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(payload)
            except Exception:
                LOGGER.exception("Listener for %s failed", event)
