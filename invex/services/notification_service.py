"""
Outbound notifications for invoice events

Delivery is fire-and-forget: the invoice service calls ``notify`` after a
change is committed and only logs failures.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class Notifier(ABC):

    @abstractmethod
    def notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes events to the log"""

    def notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Invoice event {event_type}: {payload}")


class RecordingNotifier(Notifier):
    """Keeps events in memory, for embedding applications that poll them"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append((event_type, dict(payload)))
