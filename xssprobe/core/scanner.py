"""
Page Scanner - scope gate plus per-point detection for one page.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urlsplit

from xssprobe.core.config import ScanConfig
from xssprobe.core.discovery import DiscoveredPoint, extract_injection_points
from xssprobe.core.models import Verdict, VulnClass
from xssprobe.core.orchestrator import DetectionOrchestrator
from xssprobe.core.scope import is_scan_target, url_in_scope
from xssprobe.utils.logger import get_logger

logger = get_logger("core.scanner")


@dataclass
class PointVerdict:
    discovered: DiscoveredPoint
    verdict: Verdict
    report: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        point = self.discovered.point
        return {
            "kind": point.kind.value,
            "location": point.location_path,
            "url": self.discovered.context.url,
            "method": self.discovered.context.method,
            **self.verdict.to_dict(),
            "report": self.report,
        }


class PageScanner:

    def __init__(self, orchestrator: DetectionOrchestrator, config: ScanConfig):
        self.orchestrator = orchestrator
        self.config = config

    async def scan_page(
        self,
        url: str,
        html: str,
        response_headers: Optional[Mapping[str, str]] = None,
        global_flags: Optional[Iterable[str]] = None,
        vuln_class: Optional[VulnClass] = None,
    ) -> List[PointVerdict]:
        """Scan every injection point on an in-scope page; out-of-scope pages yield nothing."""
        host = urlsplit(url).hostname or ""
        if not is_scan_target(host, self.config):
            logger.info(f"{host} is not a scan target, skipping {url}")
            return []
        rule = url_in_scope(url, self.config)
        if rule is None:
            logger.info(f"{url} is excluded by its target rule")
            return []

        discovered = extract_injection_points(url, html, self.config.scan, rule, self.config)
        headers = dict(response_headers or {})
        flags = set(global_flags or ())
        for item in discovered:
            item.context.response_headers = headers
            item.context.global_flags = flags
            item.context.vuln_class = vuln_class
            if not item.context.markup:
                item.context.markup = html

        verdicts = await asyncio.gather(*(self.orchestrator.detect(d.point, d.context) for d in discovered))
        analyzer = self.orchestrator.analyzer
        results = [
            PointVerdict(discovered=d, verdict=v, report=analyzer.generate_report(v, d.point.value))
            for d, v in zip(discovered, verdicts)
        ]

        vulnerable = sum(1 for r in results if r.verdict.is_vulnerable)
        logger.info(f"Scanned {url}: {len(results)} points, {vulnerable} vulnerable")
        return results
