import threading
import time

import httpx

from dfr import db
from dfr.health import HealthVerdict, UptimeRobotClient
from dfr.mutator import SwitchOutcome
from dfr.reconciler import Reconciler, service_action
from dfr.settings import Settings

UP, DOWN, UNKNOWN = HealthVerdict.UP, HealthVerdict.DOWN, HealthVerdict.UNKNOWN


def test_down_switches_only_entries_not_on_backup(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.9"})
    rec = Reconciler(fake_health({"S": DOWN}), provider)

    report = rec.reconcile(make_config())

    assert provider.updates == [("a.example.com", "10.0.0.9")]
    assert provider.lookups == ["a.example.com"]
    svc = report.services[0]
    assert svc.verdict == DOWN
    assert svc.action == "switched"
    assert svc.target_ip == "10.0.0.9"
    assert [(e.hostname, e.outcome) for e in svc.entries] == [
        ("a.example.com", SwitchOutcome.SWITCHED),
        ("b.example.com", SwitchOutcome.NOOP),
    ]


def test_unknown_verdict_touches_nothing(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    rec = Reconciler(fake_health({"S": UNKNOWN}), provider)

    report = rec.reconcile(make_config())

    assert provider.lookups == []
    assert provider.updates == []
    assert report.services[0].action == "skipped-unknown"
    assert report.services[0].entries == []


def test_entries_already_on_target_are_not_mutated(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    rec = Reconciler(fake_health({"S": UP}), provider)

    report = rec.reconcile(make_config())

    assert provider.lookups == []
    assert provider.updates == []
    assert report.services[0].action == "no-op"


def test_recovery_after_outage_writes_once(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.9"})
    cfg = make_config(monitors={"S": {"dns_entries": ["a.example.com"], "primary_ip": "10.0.0.1"}})
    rec = Reconciler(fake_health({"S": [DOWN, DOWN, UP]}), provider)

    states = []
    writes = []
    for _ in range(3):
        rec.reconcile(cfg)
        states.append(provider.ip("a.example.com"))
        writes.append(len(provider.updates))

    assert states == ["10.0.0.9", "10.0.0.9", "10.0.0.1"]
    assert writes == [0, 0, 1]


def test_dry_run_never_writes_and_reports_intent_once(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1"})
    cfg = make_config(monitors={"S": {"dns_entries": ["a.example.com"], "primary_ip": "10.0.0.1"}}, switch_dns=False)
    rec = Reconciler(fake_health({"S": [DOWN, DOWN, DOWN, UP, UP, DOWN]}), provider)

    actions = [rec.reconcile(cfg).services[0].action for _ in range(6)]

    assert provider.updates == []
    assert actions == ["skipped-dry-run", "no-op", "no-op", "no-op", "no-op", "skipped-dry-run"]
    # one live lookup for each logical transition
    assert provider.lookups == ["a.example.com"] * 3


def test_empty_monitor_list_means_no_mutation(fake_provider, make_config):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"stat": "ok", "monitors": []}))
    health = UptimeRobotClient("ur-key", client=httpx.Client(transport=transport))
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})

    report = Reconciler(health, provider).reconcile(make_config())

    assert report.services[0].verdict == UNKNOWN
    assert provider.updates == []


def test_failed_listing_defaults_to_primary(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    provider.fail_list = True
    rec = Reconciler(fake_health({"S": UP}), provider)

    report = rec.reconcile(make_config())

    assert report.cache_fresh is False
    assert provider.lookups == []
    assert provider.updates == []
    assert report.services[0].action == "no-op"
    assert any("refresh failed" in e["message"] for e in db.latest_events())


def test_failed_listing_still_fails_over_from_live_state(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    provider.fail_list = True
    rec = Reconciler(fake_health({"S": DOWN}), provider)

    rec.reconcile(make_config())

    assert provider.updates == [("a.example.com", "10.0.0.9"), ("b.example.com", "10.0.0.9")]


def test_stale_snapshot_is_used_when_listing_fails(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.9", "b.example.com": "10.0.0.9"})
    rec = Reconciler(fake_health({"S": [DOWN, DOWN]}), provider)
    rec.reconcile(make_config())

    provider.fail_list = True
    report = rec.reconcile(make_config())

    assert report.cache_fresh is False
    assert provider.lookups == []
    assert provider.updates == []


def test_record_missing_from_zone_is_reported(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1"})
    rec = Reconciler(fake_health({"S": DOWN}), provider)

    report = rec.reconcile(make_config())

    outcomes = {e.hostname: e.outcome for e in report.services[0].entries}
    assert outcomes == {"a.example.com": SwitchOutcome.SWITCHED, "b.example.com": SwitchOutcome.NOT_FOUND}
    assert report.services[0].action == "switched"


def test_one_failed_entry_does_not_stop_the_next(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    provider.fail_update.add("a.example.com")
    rec = Reconciler(fake_health({"S": DOWN}), provider)

    report = rec.reconcile(make_config())

    assert provider.updates == [("b.example.com", "10.0.0.9")]
    assert [e.outcome for e in report.services[0].entries] == [SwitchOutcome.FAILED, SwitchOutcome.SWITCHED]


def test_services_are_isolated(fake_provider, fake_health, make_config):
    monitors = {
        "m1": {"dns_entries": ["a.example.com"], "primary_ip": "10.0.0.1"},
        "m2": {"dns_entries": ["b.example.com"], "primary_ip": "10.0.0.2"},
        "m3": {"dns_entries": ["c.example.com"], "primary_ip": "10.0.0.3"},
    }
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.2", "c.example.com": "10.0.0.3"})
    health = fake_health({"m1": RuntimeError("monitor client bug"), "m2": UNKNOWN, "m3": DOWN})
    rec = Reconciler(health, provider)

    report = rec.reconcile(make_config(monitors=monitors))

    assert [(s.monitor_id, s.action) for s in report.services] == [
        ("m1", "failed"),
        ("m2", "skipped-unknown"),
        ("m3", "switched"),
    ]
    assert provider.updates == [("c.example.com", "10.0.0.9")]


def test_parallel_workers_keep_config_order(fake_provider, fake_health, make_config):
    monitors = {
        f"m{i}": {"dns_entries": [f"h{i}.example.com"], "primary_ip": f"10.0.1.{i}"} for i in range(1, 6)
    }
    provider = fake_provider({f"h{i}.example.com": f"10.0.1.{i}" for i in range(1, 6)})
    rec = Reconciler(fake_health({f"m{i}": DOWN for i in range(1, 6)}), provider, workers=4)

    report = rec.reconcile(make_config(monitors=monitors))

    assert [s.monitor_id for s in report.services] == ["m1", "m2", "m3", "m4", "m5"]
    assert sorted(provider.updates) == [(f"h{i}.example.com", "10.0.0.9") for i in range(1, 6)]
    assert len(report.switched()) == 5


def test_overlapping_tick_is_skipped(fake_provider, make_config):
    entered = threading.Event()
    release = threading.Event()

    class SlowHealth:
        def check_status(self, monitor_id):
            entered.set()
            release.wait(5)
            return UP

    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    rec = Reconciler(SlowHealth(), provider)
    cfg = make_config()

    t = threading.Thread(target=rec.reconcile, args=(cfg,))
    t.start()
    assert entered.wait(5)

    assert rec.reconcile(cfg) is None
    release.set()
    t.join(5)

    assert rec.runtime.skipped_ticks == 1
    assert rec.runtime.tick_count == 1
    assert rec.reconcile(cfg) is not None


def test_switch_is_journaled(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.9"})
    Reconciler(fake_health({"S": DOWN}), provider).reconcile(make_config())

    rows = db.latest_switches()
    assert len(rows) == 1
    assert rows[0]["hostname"] == "a.example.com"
    assert rows[0]["from_ip"] == "10.0.0.1"
    assert rows[0]["to_ip"] == "10.0.0.9"
    assert rows[0]["verdict"] == "down"

    lines = [e["message"] for e in db.latest_events() if e["service"] == "S"]
    assert any("verdict=down action=switched" in m for m in lines)


def test_switch_sends_alert_when_enabled(monkeypatch, fake_provider, fake_health, make_config):
    sent = []
    monkeypatch.setattr("dfr.reconciler.send_email", lambda subject, body, settings: sent.append(subject))
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.9"})
    rec = Reconciler(fake_health({"S": DOWN}), provider, settings=Settings(enable_email=True))

    rec.reconcile(make_config())

    assert sent == ["DOWN, failing over: a.example.com -> 10.0.0.9"]


def test_stop_prevents_further_services(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    health = fake_health({"S": DOWN})
    rec = Reconciler(health, provider)
    rec.stop()

    report = rec.reconcile(make_config())

    assert report.services == []
    assert health.calls == []
    assert provider.updates == []


def test_loop_runs_ticks_until_stopped(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    rec = Reconciler(fake_health({"S": UP}), provider)
    rec.start(make_config(check_interval_s=10))

    deadline = time.time() + 5
    while rec.runtime.tick_count < 1 and time.time() < deadline:
        time.sleep(0.01)
    rec.stop(timeout=5)

    assert rec.runtime.tick_count >= 1
    assert rec.running is False
    messages = [e["message"] for e in db.latest_events()]
    assert "Reconciler stopped" in messages


def test_service_action_precedence():
    from dfr.mutator import SwitchResult

    def r(outcome):
        return SwitchResult("h.example.com", "10.0.0.9", outcome)

    assert service_action([]) == "no-op"
    assert service_action([r(SwitchOutcome.NOOP), r(SwitchOutcome.SWITCHED)]) == "switched"
    assert service_action([r(SwitchOutcome.FAILED), r(SwitchOutcome.DRY_RUN)]) == "skipped-dry-run"
    assert service_action([r(SwitchOutcome.NOT_FOUND), r(SwitchOutcome.FAILED)]) == "failed"
    assert service_action([r(SwitchOutcome.NOT_FOUND), r(SwitchOutcome.NOOP)]) == "not-found"


def test_failure_mid_service_keeps_verdict_and_earlier_switches(fake_provider, fake_health, make_config):
    provider = fake_provider({"a.example.com": "10.0.0.1", "b.example.com": "10.0.0.1"})
    lookup = provider.get_record

    def get_record(name):
        if name == "b.example.com":
            raise RuntimeError("unexpected payload")
        return lookup(name)

    provider.get_record = get_record
    rec = Reconciler(fake_health({"S": DOWN}), provider)

    svc = rec.reconcile(make_config()).services[0]

    assert svc.action == "failed"
    assert svc.error == "unexpected payload"
    assert svc.verdict == DOWN
    assert svc.target_ip == "10.0.0.9"
    assert [(e.hostname, e.outcome) for e in svc.entries] == [("a.example.com", SwitchOutcome.SWITCHED)]
    assert provider.updates == [("a.example.com", "10.0.0.9")]
    assert [s["hostname"] for s in db.latest_switches()] == ["a.example.com"]


def test_close_releases_clients_that_have_one(fake_provider, fake_health):
    closed = []

    class ClosingHealth:
        def check_status(self, monitor_id):
            return UP

        def close(self):
            closed.append("health")

    Reconciler(ClosingHealth(), fake_provider()).close()
    Reconciler(fake_health(), fake_provider()).close()

    assert closed == ["health"]
