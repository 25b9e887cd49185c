from abc import ABC, abstractmethod
from typing import override

from .events import Event, StatusMessage
from .item import Location


class Supervisor(ABC):
    """Receives the status stream of a run, in the order it is produced."""

    @abstractmethod
    def status(self, message: StatusMessage):
        pass


class Recorder(Supervisor):
    def __init__(self):
        self.messages: list[StatusMessage] = []

    @override
    def status(self, message: StatusMessage):
        self.messages.append(message)

    def events(self, location: Location) -> list[Event]:
        return [m.event for m in self.messages if m.location == location]
