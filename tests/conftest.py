import os as _os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import cli` works without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from dfr import db  # noqa: E402
from dfr.config import parse_config  # noqa: E402
from dfr.dns_provider import DnsRecord, ProviderError  # noqa: E402
from dfr.health import HealthVerdict  # noqa: E402
from dfr.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


class FakeProvider:
    """In-memory zone. Point lookups and writes are recorded for assertions."""

    def __init__(self, records=None):
        self.records = {}
        for i, (name, ip) in enumerate((records or {}).items()):
            self.records[name] = DnsRecord(id=f"rec-{i}", name=name, type="A", content=ip, ttl=1, proxied=False)
        self.extra = []
        self.list_calls = 0
        self.lookups = []
        self.updates = []
        self.fail_list = False
        self.fail_lookup = set()
        self.fail_update = set()

    def list_records(self, name=None, record_type="A"):
        self.list_calls += 1
        if self.fail_list:
            raise ProviderError("list dns_records: HTTP 503")
        return list(self.records.values()) + list(self.extra)

    def get_record(self, name):
        self.lookups.append(name)
        if name in self.fail_lookup:
            raise ProviderError(f"list dns_records name={name}: ReadTimeout")
        return self.records.get(name)

    def update_content(self, record_id, content):
        for name, rec in self.records.items():
            if rec.id == record_id:
                if name in self.fail_update:
                    raise ProviderError(f"update dns_record {record_id}: HTTP 500")
                self.updates.append((name, content))
                self.records[name] = replace(rec, content=content)
                return self.records[name]
        raise ProviderError(f"update dns_record {record_id}: HTTP 404")

    def ip(self, name):
        return self.records[name].content


class FakeHealth:
    """Verdicts per monitor id; a list is consumed one verdict per call."""

    def __init__(self, verdicts=None):
        self.verdicts = dict(verdicts or {})
        self.calls = []

    def check_status(self, monitor_id):
        self.calls.append(monitor_id)
        v = self.verdicts.get(monitor_id, HealthVerdict.UNKNOWN)
        if isinstance(v, list):
            return v.pop(0)
        if isinstance(v, Exception):
            raise v
        return v


@pytest.fixture
def make_config():
    def _make(monitors=None, switch_dns=True, backup_ip="10.0.0.9", check_interval_s=60):
        return parse_config(
            {
                "zone_id": "zone-1",
                "backup_ip": backup_ip,
                "switch_dns": switch_dns,
                "check_interval_s": check_interval_s,
                "monitors": monitors
                or {"S": {"dns_entries": ["a.example.com", "b.example.com"], "primary_ip": "10.0.0.1"}},
            }
        )

    return _make


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_health():
    return FakeHealth
