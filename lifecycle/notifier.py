"""
Fire-and-forget notifications for lifecycle events.

LoggingNotifier just logs. WebhookNotifier renders a Jinja2 template from
the config directory (sandboxed) and POSTs the result to a configured URL.
Neither ever raises: a failed notification is logged and reported in the
returned dict, it does not affect the operation that triggered it.
"""
import json
import logging
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Optional, Protocol

from jinja2 import FileSystemLoader, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, event: str, payload: dict) -> dict: ...


class LoggingNotifier:
    def notify(self, event: str, payload: dict) -> dict:
        logger.info("Notify %s: %s", event, payload.get("message") or payload.get("po_number", ""))
        return {"status": "logged"}


class WebhookNotifier:
    """
    Sends a templated JSON payload to a configured URL for each event.

    The template is looked up in config_dir and receives the event name plus
    every key of the payload as variables.
    """

    def __init__(self, config: Any, config_dir: Optional[Path] = None) -> None:
        self.config = config
        self.config_dir = Path(config_dir or config.config_dir)
        self.jinja_env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.config_dir)),
            autoescape=select_autoescape(["json", "xml"]),
            keep_trailing_newline=True,
        )
        self.jinja_env.filters["tojson"] = lambda v: json.dumps(v, default=str)

    def render_payload(self, event: str, payload: dict) -> str:
        template_name = self.config.notify_webhook_template
        try:
            template = self.jinja_env.get_template(template_name)
        except Exception as e:
            logger.error("Notification template not found: %s (%s)", template_name, e)
            raise ValueError(f"Notification template '{template_name}' not found in {self.config_dir}")
        return template.render(event=event, **payload)

    def notify(self, event: str, payload: dict) -> dict:
        url = self.config.notify_webhook_url
        if not url:
            return {"status": "skipped", "reason": "NOTIFY_WEBHOOK_URL not configured"}

        try:
            body = self.render_payload(event, payload).encode("utf-8")
        except Exception as e:
            logger.error("Failed to render notification for %s: %s", event, e)
            return {"status": "failed", "error": f"Template rendering failed: {e}"}

        req = urllib.request.Request(url, data=body, method=self.config.notify_webhook_method.upper())
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("User-Agent", "PO-Lifecycle-Notifier/1.0")

        if self.config.notify_webhook_headers_json:
            try:
                for k, v in json.loads(self.config.notify_webhook_headers_json).items():
                    req.add_header(k, str(v))
            except Exception as e:
                logger.warning("Failed to parse NOTIFY_WEBHOOK_HEADERS: %s", e)

        try:
            with urllib.request.urlopen(req, timeout=self.config.notify_webhook_timeout) as response:
                status_code = response.getcode()
                logger.info("Notification %s sent: HTTP %d", event, status_code)
                return {"status": "success", "status_code": status_code}
        except urllib.error.HTTPError as e:
            logger.error("Notification %s failed: HTTP %d", event, e.code)
            return {"status": "failed", "status_code": e.code, "error": str(e)}
        except Exception as e:
            logger.error("Notification %s error: %s", event, e)
            return {"status": "failed", "error": str(e)}


def build_notifier(config: Any) -> Notifier:
    """WebhookNotifier when a URL is configured, LoggingNotifier otherwise."""
    if config.notify_webhook_url:
        return WebhookNotifier(config)
    return LoggingNotifier()
