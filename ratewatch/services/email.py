from __future__ import annotations

import httpx
import structlog

from ..alerts import templates

log = structlog.get_logger()


class ResendClient:
    def __init__(
        self,
        api_key: str,
        sender: str,
        base_url: str = "https://api.resend.com",
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client

    def _post(self, url: str, payload: dict, headers: dict) -> httpx.Response:
        if self.client is not None:
            return self.client.post(url, json=payload, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, json=payload, headers=headers)

    def send_email(self, to: str, subject: str, html: str) -> bool:
        url = f"{self.base}/emails"
        payload = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        r = self._post(url, payload, headers)
        if r.status_code // 100 != 2:
            log.warning("email_send_failed", status=r.status_code, body=r.text[:500])
            return False
        return True


class EmailNotificationSink:
    """``NotificationSink`` that renders templates and mails them through Resend."""

    def __init__(self, client: ResendClient):
        self.client = client

    def send(self, role: str, address: str, template_data: dict) -> bool:
        subject, html = templates.render(role, template_data)
        return self.client.send_email(address, subject, html)


def build_email_sink(settings) -> EmailNotificationSink | None:
    if not settings.resend_api_key:
        return None
    return EmailNotificationSink(
        ResendClient(
            settings.resend_api_key,
            settings.notify_from,
            base_url=settings.resend_base_url,
            timeout=settings.http_timeout_seconds,
        )
    )
