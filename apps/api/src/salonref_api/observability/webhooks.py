"""In-memory error-reporting channel for Square webhook handling."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class WebhookEventLog:
    last_event_at: datetime | None = None
    last_event_type: str | None = None
    last_event_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_type: str | None = None
    last_failure_event_id: str | None = None
    last_failure_reason: str | None = None


@dataclass
class WebhookObservabilitySnapshot:
    totals: Dict[str, Dict[str, int]]
    rejected_signatures: int
    events: WebhookEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "rejected_signatures": self.rejected_signatures,
            "events": {
                "last_event_at": _iso(self.events.last_event_at),
                "last_event_type": self.events.last_event_type,
                "last_event_id": self.events.last_event_id,
                "last_failure_at": _iso(self.events.last_failure_at),
                "last_failure_type": self.events.last_failure_type,
                "last_failure_event_id": self.events.last_failure_event_id,
                "last_failure_reason": self.events.last_failure_reason,
            },
        }


_OUTCOMES = ("processed", "failed", "ignored", "duplicate")


@dataclass
class WebhookObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _totals: Dict[str, Counter] = field(default_factory=lambda: {outcome: Counter() for outcome in _OUTCOMES})
    _rejected_signatures: int = 0
    _events: WebhookEventLog = field(default_factory=WebhookEventLog)

    def record(self, event_type: str, outcome: str, event_id: str | None, error: str | None = None) -> None:
        if outcome not in self._totals:
            raise ValueError(f"Unknown webhook outcome: {outcome}")
        with self._lock:
            self._totals[outcome][event_type] += 1
            now = _utcnow()
            self._events.last_event_at = now
            self._events.last_event_type = event_type
            self._events.last_event_id = event_id
            if outcome == "failed":
                self._events.last_failure_at = now
                self._events.last_failure_type = event_type
                self._events.last_failure_event_id = event_id
                self._events.last_failure_reason = error

    def record_rejected_signature(self) -> None:
        with self._lock:
            self._rejected_signatures += 1

    def snapshot(self) -> WebhookObservabilitySnapshot:
        with self._lock:
            return WebhookObservabilitySnapshot(
                totals={outcome: dict(counter) for outcome, counter in self._totals.items()},
                rejected_signatures=self._rejected_signatures,
                events=WebhookEventLog(**vars(self._events)),
            )

    def reset(self) -> None:
        with self._lock:
            for counter in self._totals.values():
                counter.clear()
            self._rejected_signatures = 0
            self._events = WebhookEventLog()


_WEBHOOK_STORE = WebhookObservabilityStore()


def get_webhook_store() -> WebhookObservabilityStore:
    return _WEBHOOK_STORE
