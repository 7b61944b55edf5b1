from __future__ import annotations

import logging
from enum import Enum

import httpx

from .config import ConfigurationError

logger = logging.getLogger("dfr.health")

# UptimeRobot monitor status codes: 0 paused, 1 not checked yet, 2 up, 8 seems down, 9 down.
MONITOR_STATUS_UP = 2


class HealthVerdict(str, Enum):
    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


class UptimeRobotClient:
    """Asks UptimeRobot for the verdict of one monitor.

    Never raises for API trouble: network errors, timeouts, HTTP errors and
    malformed payloads all come back as HealthVerdict.UNKNOWN. There are no
    retries here; the next tick is the retry.
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.uptimerobot.com/v2",
        timeout_s: float = 5.0,
        client: httpx.Client | None = None,
    ):
        if not api_key:
            raise ConfigurationError("UptimeRobot API key is not set (DFR_UPTIMEROBOT_API_KEY)")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/getMonitors"
        self._client = client or httpx.Client(timeout=timeout_s, follow_redirects=False)

    def close(self) -> None:
        self._client.close()

    def check_status(self, monitor_id: str) -> HealthVerdict:
        try:
            resp = self._client.post(
                self._url,
                data={"api_key": self._api_key, "monitors": str(monitor_id), "format": "json"},
            )
        except httpx.HTTPError as e:
            logger.error("getMonitors failed for monitor %s: %s: %s", monitor_id, type(e).__name__, e)
            return HealthVerdict.UNKNOWN

        if resp.status_code != 200:
            logger.error("getMonitors for monitor %s returned HTTP %s", monitor_id, resp.status_code)
            return HealthVerdict.UNKNOWN
        try:
            data = resp.json()
        except ValueError:
            logger.error("getMonitors for monitor %s returned invalid JSON", monitor_id)
            return HealthVerdict.UNKNOWN

        return self._verdict(monitor_id, data)

    def _verdict(self, monitor_id: str, data: object) -> HealthVerdict:
        if not isinstance(data, dict) or data.get("stat") != "ok":
            logger.error("Unexpected UptimeRobot response for monitor %s: %r", monitor_id, data)
            return HealthVerdict.UNKNOWN

        monitors = data.get("monitors")
        if not isinstance(monitors, list) or not monitors:
            logger.error("UptimeRobot returned no monitors for %s", monitor_id)
            return HealthVerdict.UNKNOWN

        monitor = next(
            (m for m in monitors if isinstance(m, dict) and str(m.get("id")) == str(monitor_id)),
            monitors[0],
        )
        status = monitor.get("status") if isinstance(monitor, dict) else None
        # bool is an int subclass; a JSON true/false is not a status code.
        if not isinstance(status, int) or isinstance(status, bool):
            logger.error("Monitor %s has no usable status: %r", monitor_id, monitor)
            return HealthVerdict.UNKNOWN

        return HealthVerdict.UP if status == MONITOR_STATUS_UP else HealthVerdict.DOWN
