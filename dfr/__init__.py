"""DNS Failover Reconciler (DFR).

Periodically asks an uptime monitor (UptimeRobot) for each backend's
verdict and keeps the backend's A records (Cloudflare) pointed at either
its primary IP or the shared backup IP:
 - up: records point to the primary IP
 - down: records point to the backup IP
 - unknown (monitor API trouble): records are left alone this tick

Writes happen only when the live record disagrees with the desired IP.
"""

__version__ = "1.0.0"
