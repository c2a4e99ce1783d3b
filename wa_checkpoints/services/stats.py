import time
from dataclasses import dataclass, field
from datetime import datetime

from wa_checkpoints.core.clock import utcnow


@dataclass
class SystemStats:
    """Process-wide event counters, reset only on restart (or by tests)."""

    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    messages_sent: int = 0
    failed_sends: int = 0
    start_time: datetime = field(default_factory=utcnow)
    _started: float = field(default_factory=time.monotonic, repr=False)

    def record_event(self) -> None:
        self.total_events += 1

    def record_notification(self, success: bool) -> None:
        if success:
            self.successful_events += 1
        else:
            self.failed_events += 1

    def record_send(self, success: bool) -> None:
        if success:
            self.messages_sent += 1
        else:
            self.failed_sends += 1

    def uptime(self) -> float:
        return time.monotonic() - self._started

    def snapshot(self) -> dict:
        return {
            "total_events": self.total_events,
            "successful_events": self.successful_events,
            "failed_events": self.failed_events,
            "messages_sent": self.messages_sent,
            "failed_sends": self.failed_sends,
            "start_time": self.start_time.isoformat(),
        }

    def reset(self) -> None:
        self.total_events = self.successful_events = self.failed_events = 0
        self.messages_sent = self.failed_sends = 0
        self.start_time = utcnow()
        self._started = time.monotonic()


stats = SystemStats()
