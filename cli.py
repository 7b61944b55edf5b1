from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from dataclasses import replace
from threading import Event

import requests

from dfr import db
from dfr.api import build_reconciler
from dfr.config import ConfigurationError, load_config
from dfr.runtime import to_dict
from dfr.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _run(args) -> int:
    cfg = load_config(args.config)
    rec = build_reconciler(cfg, replace(settings, workers=args.workers) if args.workers else settings)
    db.init_db()

    stop = Event()

    def _on_signal(signum, _frame):
        logging.getLogger("dfr").info("Received signal %s, stopping after the current service", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    rec.start(cfg)
    try:
        stop.wait()
    finally:
        rec.stop(timeout=settings.http_timeout_s * 2)
        rec.close()
    return 0


def _once(args) -> int:
    cfg = load_config(args.config)
    if args.dry_run:
        cfg = cfg.model_copy(update={"switch_dns": False})
    rec = build_reconciler(cfg, settings)
    db.init_db()
    try:
        report = rec.reconcile(cfg)
    finally:
        rec.close()
    _print(to_dict(report))
    failed = any(s.action == "failed" for s in report.services)
    return 1 if failed else 0


def _check_config(args) -> int:
    cfg = load_config(args.config)
    _print(
        {
            "zone_id": cfg.zone_id,
            "backup_ip": cfg.backup_ip,
            "switch_dns": cfg.switch_dns,
            "check_interval_s": cfg.check_interval_s,
            "monitors": {
                mid: {"primary_ip": svc.primary_ip, "dns_entries": list(svc.dns_entries)}
                for mid, svc in cfg.monitors.items()
            },
        }
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="DNS Failover Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="Status API base URL")
    p.add_argument("--config", default=settings.config_path, help="Failover YAML config")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Run the reconcile loop until SIGINT/SIGTERM")
    s_run.add_argument("--workers", type=int, default=0, help="Process services in parallel (default: DFR_WORKERS)")

    s_once = sub.add_parser("once", help="Run a single reconcile tick and print the report")
    s_once.add_argument("--dry-run", action="store_true", help="Log decisions without writing DNS")

    sub.add_parser("check-config", help="Validate the config file and print it")

    sub.add_parser("status", help="Show reconciler status from the API")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_sw = sub.add_parser("switches", help="Show DNS switch history")
    s_sw.add_argument("--limit", type=int, default=20)
    s_sw.add_argument("--hostname")

    sub.add_parser("reconcile", help="Ask the running service for an immediate tick")

    args = p.parse_args(argv)
    _setup_logging(args.log_level)

    local = {"run": _run, "once": _once, "check-config": _check_config}
    if args.cmd in local:
        try:
            return local[args.cmd](args)
        except ConfigurationError as e:
            print(f"error: {e}", file=sys.stderr)
            return 2

    base = args.api.rstrip("/")

    if args.cmd == "status":
        _print(requests.get(f"{base}/status", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "switches":
        params = {"limit": args.limit}
        if args.hostname:
            params["hostname"] = args.hostname
        _print(requests.get(f"{base}/switches", params=params, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/reconcile", timeout=120)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
