from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

RESET = "reset"
ALIGN = "align"
ITERATION = "iteration"
LOCKED = "locked"
UPDATE = "update"
LOOK_AHEAD = "look_ahead"


@dataclass(frozen=True)
class SolverEvent:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, item):
        return self.payload[item]


class SolverListener(Protocol):
    def notify(self, event: SolverEvent) -> None:
        ...


class EventRecorder:
    """
    keeps every event it is notified of, in order
    """

    def __init__(self):
        self.events: List[SolverEvent] = []

    def notify(self, event: SolverEvent):
        self.events.append(event)

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> List[SolverEvent]:
        return [event for event in self.events if event.name == name]

    def clear(self):
        self.events.clear()
