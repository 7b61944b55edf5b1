from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Protocol

from .config import normalize_hostname
from .dns_provider import DnsRecord

logger = logging.getLogger("dfr.cache")


class RecordLister(Protocol):
    def list_records(self, name: str | None = None, record_type: str | None = "A") -> list[DnsRecord]: ...


class DNSStateCache:
    """Advisory hostname -> IP snapshot of the zone's A records.

    Rebuilt wholesale by refresh() once per tick. The provider stays the
    source of truth; nothing here is persisted.

    Dry-run intents are kept as an overlay that survives refreshes, so a
    transition that was only logged is not logged again on every tick.
    """

    def __init__(self, provider: RecordLister):
        self.provider = provider
        self._lock = Lock()
        self._snapshot: dict[str, str] = {}
        self._intents: dict[str, str] = {}
        self.fresh = False
        self.refreshed_at: datetime | None = None

    def refresh(self) -> dict[str, str]:
        """Replace the snapshot from one full zone listing.

        On failure the previous snapshot is kept, `fresh` is cleared and the
        provider error is raised to the caller.
        """
        try:
            records = self.provider.list_records()
        except Exception:
            self.fresh = False
            raise

        snapshot: dict[str, str] = {}
        for r in records:
            if r.type != "A":
                continue
            # last one wins on duplicates
            snapshot[normalize_hostname(r.name)] = r.content

        with self._lock:
            self._snapshot = snapshot
            self.fresh = True
            self.refreshed_at = datetime.now(timezone.utc)
        logger.debug("DNS snapshot refreshed: %d A records", len(snapshot))
        return self.snapshot()

    def snapshot(self) -> dict[str, str]:
        """Current view: the provider snapshot with dry-run intents on top."""
        with self._lock:
            return {**self._snapshot, **self._intents}

    def get(self, hostname: str) -> str | None:
        host = normalize_hostname(hostname)
        with self._lock:
            if host in self._intents:
                return self._intents[host]
            return self._snapshot.get(host)

    def set(self, hostname: str, ip: str) -> None:
        """Record the live value of one entry (after a switch or a live lookup)."""
        host = normalize_hostname(hostname)
        with self._lock:
            self._snapshot[host] = ip
            self._intents.pop(host, None)

    def record_intent(self, hostname: str, ip: str) -> None:
        with self._lock:
            self._intents[normalize_hostname(hostname)] = ip

    def intents(self) -> dict[str, str]:
        with self._lock:
            return dict(self._intents)
