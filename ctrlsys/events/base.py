from abc import ABC, abstractmethod

from ctrlsys.events.eventbus_model import TimerEvent


class EventBus(ABC):

    @abstractmethod
    def publish(self, event: TimerEvent) -> int: ...

    @abstractmethod
    def subscribe(self): ...

    @abstractmethod
    def unsubscribe(self, subscription) -> None: ...
