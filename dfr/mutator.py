from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .cache import DNSStateCache
from .dns_provider import DnsRecord, ProviderError

logger = logging.getLogger("dfr.mutator")


class SwitchOutcome(str, Enum):
    SWITCHED = "switched"
    DRY_RUN = "dry_run"
    NOOP = "noop"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class SwitchResult:
    hostname: str
    target_ip: str
    outcome: SwitchOutcome
    previous_ip: str | None = None


class RecordWriter(Protocol):
    def get_record(self, name: str) -> DnsRecord | None: ...

    def update_content(self, record_id: str, content: str) -> DnsRecord: ...


class DNSMutator:
    """Points one A record at a target IP, writing only when it has to."""

    def __init__(self, provider: RecordWriter, cache: DNSStateCache, enabled: bool = True):
        self.provider = provider
        self.cache = cache
        self.enabled = enabled

    def switch_to(self, hostname: str, target_ip: str) -> SwitchResult:
        try:
            record = self.provider.get_record(hostname)
        except ProviderError as e:
            logger.error("Lookup of %s failed while switching to %s: %s", hostname, target_ip, e)
            return SwitchResult(hostname, target_ip, SwitchOutcome.FAILED, None)

        if record is None:
            logger.warning("DNS record for %s was not found; cannot switch it to %s", hostname, target_ip)
            return SwitchResult(hostname, target_ip, SwitchOutcome.NOT_FOUND, None)

        previous = record.content
        if previous == target_ip:
            logger.info("%s already points to %s", hostname, target_ip)
            self.cache.set(hostname, previous)
            return SwitchResult(hostname, target_ip, SwitchOutcome.NOOP, previous)

        if not self.enabled:
            logger.info("DNS switch for %s from %s to %s skipped (dry-run)", hostname, previous, target_ip)
            self.cache.record_intent(hostname, target_ip)
            return SwitchResult(hostname, target_ip, SwitchOutcome.DRY_RUN, previous)

        try:
            self.provider.update_content(record.id, target_ip)
        except ProviderError as e:
            logger.error("Switching %s to %s failed: %s", hostname, target_ip, e)
            return SwitchResult(hostname, target_ip, SwitchOutcome.FAILED, previous)

        logger.info("Switched DNS for %s from %s to %s", hostname, previous, target_ip)
        self.cache.set(hostname, target_ip)
        return SwitchResult(hostname, target_ip, SwitchOutcome.SWITCHED, previous)
