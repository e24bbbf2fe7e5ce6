from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class TimelineEvent:
    state: str
    ts: str
    metadata: dict[str, Any] = field(default_factory=dict)


class FlowTimeline:
    """Ordered record of the states a flow passed through."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._events: list[TimelineEvent] = []

    def event(self, state: str, metadata: dict[str, Any] | None = None) -> None:
        self._events.append(
            TimelineEvent(
                state=state,
                ts=datetime.now(tz=timezone.utc).isoformat(),
                metadata=metadata or {},
            )
        )

    @property
    def states(self) -> list[str]:
        return [event.state for event in self._events]

    def snapshot(self) -> dict[str, Any]:
        elapsed_ms = int((time.perf_counter() - self._start) * 1000)
        return {
            "elapsed_ms": elapsed_ms,
            "events": [
                {"state": event.state, "ts": event.ts, "metadata": event.metadata}
                for event in self._events
            ],
        }
