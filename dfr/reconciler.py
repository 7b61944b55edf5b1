from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Event, Lock, Thread
from typing import Protocol

from . import db
from .alerts import send_email, switch_alert
from .cache import DNSStateCache
from .config import FailoverConfig, MonitoredService
from .dns_provider import DnsRecord, ProviderError
from .health import HealthVerdict
from .mutator import DNSMutator, SwitchOutcome, SwitchResult
from .runtime import RuntimeState, ServiceReport, TickReport, utc_now
from .settings import Settings

logger = logging.getLogger("dfr.reconciler")


class HealthOracle(Protocol):
    def check_status(self, monitor_id: str) -> HealthVerdict: ...


class DNSProvider(Protocol):
    def list_records(self, name: str | None = None, record_type: str | None = "A") -> list[DnsRecord]: ...

    def get_record(self, name: str) -> DnsRecord | None: ...

    def update_content(self, record_id: str, content: str) -> DnsRecord: ...


def service_action(entries: list[SwitchResult]) -> str:
    outcomes = {e.outcome for e in entries}
    if SwitchOutcome.SWITCHED in outcomes:
        return "switched"
    if SwitchOutcome.DRY_RUN in outcomes:
        return "skipped-dry-run"
    if SwitchOutcome.FAILED in outcomes:
        return "failed"
    if SwitchOutcome.NOT_FOUND in outcomes:
        return "not-found"
    return "no-op"


class Reconciler:
    """Keeps every monitored service's A records on the IP its health calls for.

    One tick: refresh the zone snapshot, then per service ask the monitor for
    a verdict and repoint the entries that disagree with it. Ticks never
    overlap; a tick requested while another runs is skipped.
    """

    def __init__(
        self,
        health: HealthOracle,
        provider: DNSProvider,
        runtime: RuntimeState | None = None,
        workers: int = 1,
        settings: Settings | None = None,
    ):
        self.health = health
        self.provider = provider
        self.runtime = runtime or RuntimeState()
        self.workers = max(1, int(workers))
        self.settings = settings
        self.cache = DNSStateCache(provider)
        self._tick_lock = Lock()
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self, config: FailoverConfig) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, args=(config,), name="dfr-reconciler", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr and self._thr.is_alive():
            self._thr.join(timeout)

    def close(self) -> None:
        """Release the HTTP clients. Call after stop()."""
        for client in (self.health, self.provider):
            close = getattr(client, "close", None)
            if close is not None:
                close()

    @property
    def running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def _loop(self, config: FailoverConfig) -> None:
        mode = "dry-run" if not config.switch_dns else "live"
        db.log_event("INFO", f"Reconciler started ({mode}, every {config.check_interval_s}s, {len(config.monitors)} monitors)")
        while not self._stop.is_set():
            try:
                self.reconcile(config)
            except Exception as e:
                logger.exception("Reconcile tick failed")
                db.log_event("ERROR", f"Reconcile tick failed: {type(e).__name__}: {e}")
            self._stop.wait(config.check_interval_s)
        db.log_event("INFO", "Reconciler stopped")

    def reconcile(self, config: FailoverConfig) -> TickReport | None:
        """Run one tick. Returns None if another tick is still running."""
        if not self._tick_lock.acquire(blocking=False):
            self.runtime.record_skipped()
            db.log_event("WARN", "Previous tick still running; skipping this one")
            return None
        try:
            report = self._tick(config)
        finally:
            self._tick_lock.release()
        self.runtime.record_tick(report)
        return report

    def _tick(self, config: FailoverConfig) -> TickReport:
        report = TickReport(dry_run=not config.switch_dns)
        try:
            self.cache.refresh()
        except ProviderError as e:
            db.log_event("ERROR", f"DNS state refresh failed; comparing against last known or primary IPs: {e}")
        report.cache_fresh = self.cache.fresh

        mutator = DNSMutator(self.provider, self.cache, enabled=config.switch_dns)
        services = config.services()

        def work(svc: MonitoredService) -> ServiceReport | None:
            if self._stop.is_set():
                return None
            return self._guarded(svc, config, mutator, report.cache_fresh)

        if self.workers > 1 and len(services) > 1:
            # Entries are partitioned by service, so workers never share a record.
            with ThreadPoolExecutor(max_workers=min(self.workers, len(services)), thread_name_prefix="dfr-svc") as pool:
                results = list(pool.map(work, services))
        else:
            results = [work(svc) for svc in services]

        report.services = [r for r in results if r is not None]
        if len(report.services) < len(services):
            db.log_event("WARN", f"Shutdown requested; {len(services) - len(report.services)} service(s) not processed this tick")
        report.finished_at = utc_now()
        logger.info(
            "Tick finished: %d service(s), %d switched%s",
            len(report.services),
            len(report.switched()),
            " (dry-run)" if report.dry_run else "",
        )
        return report

    def _guarded(
        self, svc: MonitoredService, config: FailoverConfig, mutator: DNSMutator, cache_fresh: bool
    ) -> ServiceReport:
        report = ServiceReport(svc.monitor_id, svc.label, HealthVerdict.UNKNOWN, "failed")
        try:
            self._reconcile_service(svc, config, mutator, cache_fresh, report)
        except Exception as e:
            # Keep whatever was decided and written before the failure.
            logger.exception("Processing monitor %s failed", svc.monitor_id)
            report.action = "failed"
            report.error = str(e)
            done = ", ".join(f"{r.hostname}={r.outcome.value}" for r in report.entries)
            db.log_event(
                "ERROR",
                f"{svc.label}: verdict={report.verdict.value} processing failed: {type(e).__name__}: {e}"
                + (f" [{done}]" if done else ""),
                service=svc.monitor_id,
            )
        return report

    def _reconcile_service(
        self,
        svc: MonitoredService,
        config: FailoverConfig,
        mutator: DNSMutator,
        cache_fresh: bool,
        report: ServiceReport,
    ) -> None:
        verdict = self.health.check_status(svc.monitor_id)
        report.verdict = verdict
        if verdict == HealthVerdict.UNKNOWN:
            db.log_event(
                "WARN",
                f"{svc.label}: verdict=unknown action=skipped-unknown (status unavailable, DNS left as is)",
                service=svc.monitor_id,
            )
            report.action = "skipped-unknown"
            return

        target = svc.primary_ip if verdict == HealthVerdict.UP else config.backup_ip
        report.target_ip = target
        entries = report.entries
        for host in svc.dns_entries:
            current = self.cache.get(host)
            if current is None:
                # Missing from the snapshot: assume primary so an incomplete listing
                # cannot trigger a switch. A record that never existed stays hidden
                # here until the mutator's live lookup reports it missing.
                if cache_fresh:
                    logger.warning("%s is not in the zone snapshot; assuming primary IP %s", host, svc.primary_ip)
                current = svc.primary_ip

            if current == target:
                logger.debug("%s is already pointed to the correct IP (%s)", host, target)
                entries.append(SwitchResult(host, target, SwitchOutcome.NOOP, current))
                continue

            logger.info("%s is %s. Switching DNS from %s to %s.", host, "online" if verdict == HealthVerdict.UP else "offline", current, target)
            result = mutator.switch_to(host, target)
            entries.append(result)
            if result.outcome == SwitchOutcome.SWITCHED:
                self._on_switched(svc, result, verdict)

        action = service_action(entries)
        detail = ", ".join(f"{e.hostname}={e.outcome.value}" for e in entries)
        level = "WARN" if action in {"failed", "not-found"} else "INFO"
        db.log_event(
            level,
            f"{svc.label}: verdict={verdict.value} action={action} target={target} [{detail}]",
            service=svc.monitor_id,
        )
        report.action = action

    def _on_switched(self, svc: MonitoredService, result: SwitchResult, verdict: HealthVerdict) -> None:
        db.record_switch(svc.monitor_id, result.hostname, result.previous_ip, result.target_ip, verdict.value)
        db.log_event(
            "INFO",
            f"Switched DNS for {result.hostname} from {result.previous_ip} to {result.target_ip}",
            service=svc.monitor_id,
            hostname=result.hostname,
        )
        if self.settings and self.settings.enable_email:
            subject, body = switch_alert(svc.label, result.hostname, result.previous_ip, result.target_ip, verdict.value)
            send_email(subject, body, self.settings)
