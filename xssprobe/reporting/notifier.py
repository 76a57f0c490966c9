"""
Vulnerability sinks - one-way delivery of confirmed findings.

A sink receives a VulnReport for every vulnerable Verdict. Delivery failures
are logged by the caller and never retried.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp

from xssprobe.core.config import settings
from xssprobe.core.exceptions import NotificationError
from xssprobe.core.models import VulnReport
from xssprobe.utils.logger import get_logger

logger = get_logger("reporting.notifier")


class VulnerabilitySink(ABC):

    @abstractmethod
    async def notify(self, report: VulnReport) -> None:
        """Deliver one report. Raises NotificationError on failure."""

    async def close(self) -> None:
        return None


class LoggingSink(VulnerabilitySink):
    """Writes each report to the log and keeps it in memory."""

    def __init__(self):
        self.reports: List[VulnReport] = []

    async def notify(self, report: VulnReport) -> None:
        self.reports.append(report)
        logger.warning(
            f"[VULN] {report.payload_type} XSS at {report.url} "
            f"param={report.parameter} confidence={report.confidence:.2f}"
        )
        logger.debug(json.dumps(report.to_dict(), ensure_ascii=False))


def build_post_message(report: VulnReport) -> Dict[str, Any]:
    """Rich-text "post" message for chat webhooks (Feishu/Lark format)."""
    details = json.dumps(
        {
            "parameter": report.parameter,
            "payload": report.payload,
            "payload_type": report.payload_type,
            "description": report.description,
        },
        indent=2,
        ensure_ascii=False,
    )
    rows = [
        ("Vulnerability type: ", report.type),
        ("URL: ", report.url),
        ("Details:\n", details),
        ("Found at: ", report.timestamp),
    ]
    return {
        "msg_type": "post",
        "content": {
            "post": {
                "en_us": {
                    "title": "XSS vulnerability found",
                    "content": [
                        [{"tag": "text", "text": label}, {"tag": "text", "text": value}]
                        for label, value in rows
                    ],
                }
            }
        },
    }


class WebhookSink(VulnerabilitySink):
    """
    Posts each report to a chat webhook.

    Usage:
        sink = WebhookSink("https://open.feishu.cn/open-apis/bot/v2/hook/...")
        await sink.notify(report)
        await sink.close()
    """

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url or settings.WEBHOOK_URL
        if not self.url:
            raise NotificationError("Webhook URL is not configured")
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        return self._session

    async def notify(self, report: VulnReport) -> None:
        session = await self._get_session()
        try:
            async with session.post(self.url, json=build_post_message(report)) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise NotificationError(
                        f"Webhook returned {response.status}",
                        context={"url": report.url, "body": body[:200]},
                    )
        except aiohttp.ClientError as e:
            raise NotificationError(f"Webhook delivery failed: {e}", context={"url": report.url}, cause=e)
        logger.info(f"Reported {report.payload_type} XSS at {report.url} to webhook")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
