from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from .health import HealthVerdict
from .mutator import SwitchOutcome, SwitchResult


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ServiceReport:
    monitor_id: str
    label: str
    verdict: HealthVerdict
    action: str  # no-op|switched|skipped-dry-run|skipped-unknown|not-found|failed
    target_ip: str | None = None
    entries: list[SwitchResult] = field(default_factory=list)
    error: str | None = None


@dataclass
class TickReport:
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    cache_fresh: bool = False
    dry_run: bool = False
    services: list[ServiceReport] = field(default_factory=list)

    def switched(self) -> list[SwitchResult]:
        return [e for s in self.services for e in s.entries if e.outcome == SwitchOutcome.SWITCHED]


def to_dict(obj: Any) -> Any:
    return asdict(obj, dict_factory=lambda items: {k: (v.value if hasattr(v, "value") else v) for k, v in items})


class RuntimeState:
    """In-memory status of the reconciler, read by the status API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.started_at = utc_now()
        self.tick_count = 0
        self.skipped_ticks = 0
        self.last_tick: TickReport | None = None

    def record_tick(self, report: TickReport) -> None:
        with self.lock:
            self.tick_count += 1
            self.last_tick = report

    def record_skipped(self) -> None:
        with self.lock:
            self.skipped_ticks += 1

    def status(self) -> dict[str, Any]:
        with self.lock:
            return {
                "started_at": self.started_at,
                "tick_count": self.tick_count,
                "skipped_ticks": self.skipped_ticks,
                "last_tick": to_dict(self.last_tick) if self.last_tick else None,
            }
