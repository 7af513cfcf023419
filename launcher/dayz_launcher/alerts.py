from __future__ import annotations
import json
import logging
import threading
import urllib.request
from .logging_setup import get_logger

log = get_logger("dayz.launcher.alerts")

ALERT_PREFIX = "DayZ Server Alert: "
CRITICAL_RESTARTS_EXHAUSTED = "DayZ Server CRITICAL: Max restart attempts reached. Server stopped."


class AlertSink:
    """
    Fire-and-forget alerting: the message is always written to the local log
    first, then POSTed as {"text": ...} to the webhook if one is configured.
    Delivery errors are logged and dropped, there is no redelivery.
    """

    def __init__(self, webhook_url: str = "", *, timeout: float = 5.0):
        self.webhook_url = webhook_url
        self.timeout = min(timeout, 5.0)

    def notify(self, message: str, *, level: int = logging.WARNING, prefix: str = ALERT_PREFIX) -> bool:
        log.log(level, "ALERT: %s", message)
        if not self.webhook_url:
            return False
        return self._deliver(f"{prefix}{message}")

    def critical(self, text: str) -> bool:
        log.critical("ALERT: %s", text)
        if not self.webhook_url:
            return False
        return self._deliver(text)

    def _deliver(self, text: str) -> bool:
        # urlopen's timeout covers connect and read but not name resolution,
        # so the whole POST runs on a worker and the caller waits at most `timeout`
        outcome = {}
        worker = threading.Thread(target=self._post, args=(text, outcome), name="alert-webhook", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            log.warning("Alert delivery to webhook timed out after %ss", self.timeout)
            return False
        return outcome.get("ok", False)

    def _post(self, text: str, outcome: dict) -> None:
        body = json.dumps({"text": text}).encode("utf-8")
        req = urllib.request.Request(
            self.webhook_url,
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = getattr(resp, "status", 200)
        except Exception as e:
            log.warning("Alert delivery to webhook failed: %s", e)
            return
        if status >= 400:
            log.warning("Alert webhook answered HTTP %s", status)
            return
        outcome["ok"] = True
