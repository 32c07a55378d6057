"""Configuration dataclass for a watch session."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass
class WatchConfig:
    """Configuration for a QueryWatcher session."""

    queue: str
    """Name of the service broker queue notifications are delivered to."""

    options: Mapping[str, Any]
    """Backend subscribe options, passed through to the database untouched."""

    subscriptions: Mapping[str, str]
    """Subscription name -> SQL statement to watch."""

    fetch_results: bool = False
    """Run the subscription's SQL on change and attach the rows to the event."""

    timeout: int | None = None
    """Subscription timeout in seconds, passed through to the backend."""

    receive_timeout: float | None = None
    """Seconds the blocking receive waits server-side. None waits forever."""

    def __post_init__(self) -> None:
        if not self.queue:
            msg = "queue is required"
            raise ValueError(msg)
        if self.options is None:
            msg = "options are required"
            raise ValueError(msg)
        if not self.subscriptions:
            msg = "at least one subscription is required"
            raise ValueError(msg)
        if self.receive_timeout is not None and self.receive_timeout <= 0:
            msg = "receive_timeout must be positive"
            raise ValueError(msg)
