from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import ConfigurationError

logger = logging.getLogger("dfr.dns_provider")


class ProviderError(Exception):
    """A DNS provider call failed (transport, HTTP status or malformed payload)."""


@dataclass(frozen=True)
class DnsRecord:
    id: str
    name: str
    type: str
    content: str
    ttl: int | None = None
    proxied: bool | None = None


def _record(raw: Any) -> DnsRecord:
    if not isinstance(raw, dict):
        raise ProviderError(f"Malformed DNS record: {raw!r}")
    try:
        return DnsRecord(
            id=str(raw["id"]),
            name=str(raw["name"]),
            type=str(raw["type"]),
            content=str(raw["content"]),
            ttl=raw.get("ttl"),
            proxied=raw.get("proxied"),
        )
    except KeyError as e:
        raise ProviderError(f"DNS record is missing field {e}: {raw!r}") from None


class CloudflareClient:
    """Minimal Cloudflare v4 client for one zone's DNS records."""

    def __init__(
        self,
        api_token: str | None,
        zone_id: str,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout_s: float = 5.0,
        per_page: int = 100,
        client: httpx.Client | None = None,
    ):
        if not api_token:
            raise ConfigurationError("Cloudflare API token is not set (DFR_CLOUDFLARE_API_TOKEN)")
        self.zone_id = zone_id
        self.per_page = max(5, int(per_page))
        self._base = f"{base_url.rstrip('/')}/zones/{zone_id}/dns_records"
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=False)
        self._headers = {"Authorization": f"Bearer {api_token}"}

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, url: str, what: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"{what}: {type(e).__name__}: {e}") from e
        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(f"{what}: HTTP {resp.status_code}, invalid JSON") from None
        if resp.status_code >= 400 or not isinstance(data, dict) or not data.get("success", False):
            errors = data.get("errors") if isinstance(data, dict) else None
            raise ProviderError(f"{what}: HTTP {resp.status_code} {errors or ''}".rstrip())
        if "result" not in data:
            raise ProviderError(f"{what}: response has no result")
        return data

    def list_records(self, name: str | None = None, record_type: str | None = "A") -> list[DnsRecord]:
        """Return every record of the zone, following pagination."""
        what = f"list dns_records name={name}" if name else "list dns_records"
        params: dict[str, Any] = {"per_page": self.per_page}
        if name:
            params["name"] = name
        if record_type:
            params["type"] = record_type

        out: list[DnsRecord] = []
        page = 1
        while True:
            data = self._call("GET", self._base, what, params={**params, "page": page})
            result = data["result"]
            if not isinstance(result, list):
                raise ProviderError(f"{what}: result is not a list")
            out.extend(_record(r) for r in result)

            info = data.get("result_info") or {}
            total_pages = info.get("total_pages") if isinstance(info, dict) else None
            if not isinstance(total_pages, int) or page >= total_pages or not result:
                return out
            page += 1

    def get_record(self, name: str) -> DnsRecord | None:
        """Point lookup of the A record for `name`, straight from the provider."""
        records = self.list_records(name=name)
        if not records:
            return None
        if len(records) > 1:
            # Same pick as a full listing, so the snapshot and the lookup agree.
            logger.warning("%d A records for %s; using the last one (%s)", len(records), name, records[-1].id)
        return records[-1]

    def update_content(self, record_id: str, content: str) -> DnsRecord:
        """Change only the content of one record; other attributes are left alone."""
        data = self._call(
            "PATCH",
            f"{self._base}/{record_id}",
            f"update dns_record {record_id}",
            json={"content": content},
        )
        return _record(data["result"])
