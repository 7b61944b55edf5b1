from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query

from . import db
from .config import FailoverConfig, load_config
from .dns_provider import CloudflareClient
from .health import UptimeRobotClient
from .reconciler import Reconciler
from .runtime import RuntimeState, to_dict
from .settings import Settings, settings as default_settings


def build_reconciler(config: FailoverConfig, settings: Settings) -> Reconciler:
    """Wire the real UptimeRobot and Cloudflare clients. Raises ConfigurationError on missing credentials."""
    health = UptimeRobotClient(
        settings.uptimerobot_api_key,
        base_url=settings.uptimerobot_url,
        timeout_s=settings.http_timeout_s,
    )
    provider = CloudflareClient(
        settings.cloudflare_api_token,
        config.zone_id,
        base_url=settings.cloudflare_api_url,
        timeout_s=settings.http_timeout_s,
        per_page=settings.cloudflare_per_page,
    )
    return Reconciler(health, provider, runtime=RuntimeState(), workers=settings.workers, settings=settings)


def create_app(
    settings: Settings | None = None,
    config: FailoverConfig | None = None,
    reconciler: Reconciler | None = None,
    start_loop: bool = True,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config if config is not None else load_config(settings.config_path)
        rec = reconciler if reconciler is not None else build_reconciler(cfg, settings)
        db.init_db()
        app.state.config = cfg
        app.state.reconciler = rec
        if start_loop:
            rec.start(cfg)
        try:
            yield
        finally:
            rec.stop(timeout=settings.http_timeout_s * 2)
            rec.close()

    app = FastAPI(title="DNS Failover Reconciler", lifespan=lifespan)

    @app.get("/health")
    def health() -> dict:
        rec: Reconciler = app.state.reconciler
        return {"status": "ok", "reconciler_running": rec.running}

    @app.get("/status")
    def status() -> dict:
        cfg: FailoverConfig = app.state.config
        rec: Reconciler = app.state.reconciler
        return {
            "zone_id": cfg.zone_id,
            "dry_run": not cfg.switch_dns,
            "check_interval_s": cfg.check_interval_s,
            "backup_ip": cfg.backup_ip,
            "monitors": {
                mid: {"name": svc.name, "primary_ip": svc.primary_ip, "dns_entries": list(svc.dns_entries)}
                for mid, svc in cfg.monitors.items()
            },
            "dns_state": rec.cache.snapshot(),
            "cache_fresh": rec.cache.fresh,
            "dry_run_intents": rec.cache.intents(),
            **rec.runtime.status(),
        }

    @app.get("/events")
    def events(limit: int = Query(50, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit)

    @app.get("/switches")
    def switches(limit: int = Query(50, ge=1, le=1000), hostname: str | None = None) -> list[dict]:
        return db.latest_switches(limit, hostname=hostname)

    @app.post("/reconcile")
    def reconcile_now() -> dict:
        rec: Reconciler = app.state.reconciler
        report = rec.reconcile(app.state.config)
        if report is None:
            raise HTTPException(status_code=409, detail="A reconcile tick is already running")
        return to_dict(report)

    return app
