"""
Reporting module for xssprobe.
"""

from xssprobe.reporting.notifier import (
    LoggingSink,
    VulnerabilitySink,
    WebhookSink,
    build_post_message,
)

__all__ = [
    "LoggingSink",
    "VulnerabilitySink",
    "WebhookSink",
    "build_post_message",
]
