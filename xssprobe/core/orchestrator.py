"""
Detection Orchestrator - runs one injection point through the pipeline.

    fingerprint -> classify -> select + generate -> dispatch -> analyze

``detect`` is a failure boundary: whatever goes wrong inside a stage, the
caller receives a Verdict (possibly ``Verdict.failed``) and the scan carries
on with the next point.
"""

import asyncio
import random
import time
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

from xssprobe.core.analyzer import ResultAnalyzer
from xssprobe.core.config import ScanConfig
from xssprobe.core.dispatcher import ProbeDispatcher
from xssprobe.core.exceptions import AccessDenied
from xssprobe.core.models import (
    DetectionContext,
    Environment,
    InjectionPoint,
    ProbeRequest,
    ProbeResult,
    Variant,
    Verdict,
    VulnReport,
)
from xssprobe.reporting.notifier import VulnerabilitySink
from xssprobe.tools.context_analyzer import ContextClassifier
from xssprobe.tools.payloads.catalog import PayloadCatalog
from xssprobe.tools.payloads.generator import GenerationOptions, VariantGenerator
from xssprobe.tools.waf.fingerprinter import EnvironmentFingerprinter
from xssprobe.utils.logger import get_logger

logger = get_logger("core.orchestrator")

PATH_SEGMENT_PREFIX = "path:"


def make_token() -> str:
    """Numeric uniqueness token: epoch milliseconds plus three random digits."""
    return f"{int(time.time() * 1000)}{random.randint(0, 999):03d}"


def build_probe_request(ctx: DetectionContext, point: InjectionPoint, payload: str) -> ProbeRequest:
    """Place ``payload`` where the point's value sits in the target request."""
    method = ctx.method.upper()
    parts = urlsplit(ctx.url)

    if point.location_path.startswith(PATH_SEGMENT_PREFIX):
        index = int(point.location_path[len(PATH_SEGMENT_PREFIX):])
        segments = parts.path.split("/")
        segments[index] = quote(payload, safe="")
        url = urlunsplit((parts.scheme, parts.netloc, "/".join(segments), parts.query, parts.fragment))
        return ProbeRequest(url=url, method=method, headers=dict(ctx.headers))

    params = dict(ctx.params) if ctx.params else dict(parse_qsl(parts.query, keep_blank_values=True))
    params[ctx.parameter] = payload

    if method == "GET":
        url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))
        return ProbeRequest(url=url, method=method, headers=dict(ctx.headers))

    headers = {"Content-Type": "application/x-www-form-urlencoded", **ctx.headers}
    return ProbeRequest(url=ctx.url, method=method, headers=headers, body=urlencode(params))


class DetectionOrchestrator:
    """
    Usage:
        orchestrator = DetectionOrchestrator(dispatcher, config)
        verdict = await orchestrator.detect(point, DetectionContext(url=..., parameter="q"))
    """

    def __init__(
        self,
        dispatcher: ProbeDispatcher,
        config: Optional[ScanConfig] = None,
        fingerprinter: Optional[EnvironmentFingerprinter] = None,
        classifier: Optional[ContextClassifier] = None,
        catalog: Optional[PayloadCatalog] = None,
        generator: Optional[VariantGenerator] = None,
        analyzer: Optional[ResultAnalyzer] = None,
        sink: Optional[VulnerabilitySink] = None,
        token_factory: Callable[[], str] = make_token,
        server_filtering: bool = False,
    ):
        self.dispatcher = dispatcher
        self.config = config or ScanConfig()
        self.fingerprinter = fingerprinter or EnvironmentFingerprinter()
        self.classifier = classifier or ContextClassifier()
        self.catalog = catalog or PayloadCatalog()
        self.generator = generator or VariantGenerator()
        self.analyzer = analyzer or ResultAnalyzer(classifier=self.classifier)
        self.sink = sink
        self.token_factory = token_factory
        self.server_filtering = server_filtering
        self._notify_tasks: Set[asyncio.Task] = set()
        self.stats: Dict[str, int] = {"detections": 0, "vulnerable": 0, "failed": 0, "probes": 0}

    async def detect(self, point: InjectionPoint, ctx: Optional[DetectionContext] = None) -> Verdict:
        ctx = ctx or DetectionContext()
        self.stats["detections"] += 1
        try:
            verdict = await self._detect(point, ctx)
        except Exception as e:
            self.stats["failed"] += 1
            logger.error(f"Detection failed for {point.kind.value} '{point.location_path}': {e}", exc_info=True)
            return Verdict.failed(str(e))

        if verdict.is_vulnerable:
            self.stats["vulnerable"] += 1
        return verdict

    async def _detect(self, point: InjectionPoint, ctx: DetectionContext) -> Verdict:
        environment = self._fingerprint(ctx)
        context = self.classifier.classify(ctx.markup or point.value, ctx.element)

        selection = self.config.payload_selection
        payload = self.catalog.select(ctx.vuln_class or selection.vuln_class, context)
        options = GenerationOptions(
            include_raw=selection.include_raw,
            encoding=selection.encoding,
            obfuscation=selection.obfuscation,
            waf_aware=selection.waf_aware,
            server_filtering=self.server_filtering,
        )
        variants = [
            v for v in self.generator.generate(payload, context, environment, self.token_factory(), options)
            if v.confidence >= selection.min_confidence
        ]
        if not variants:
            logger.info(f"No variant of {payload.id} reached confidence {selection.min_confidence}")
            return Verdict(is_vulnerable=False, confidence=0.0, context=context)

        if ctx.url and (ctx.parameter or point.location_path.startswith(PATH_SEGMENT_PREFIX)):
            results = await self._probe(point, ctx, variants)
        else:
            # No network target: judge the markup we already have
            results = [ProbeResult(
                request=ProbeRequest(url=ctx.url or "about:blank"),
                response=ctx.markup,
                success=True,
                variant=variants[0],
            )]

        verdict = self.analyzer.analyze(results, point.value, context)
        if verdict.is_vulnerable:
            self._report(point, ctx, verdict, self._winning_variant(results, verdict) or variants[0])
        return verdict

    def _fingerprint(self, ctx: DetectionContext) -> Environment:
        if ctx.url:
            return self.fingerprinter.fingerprint_cached(ctx.url, ctx.response_headers, ctx.global_flags, ctx.markup)
        return self.fingerprinter.fingerprint(ctx.response_headers, ctx.global_flags, ctx.markup)

    async def _probe(self, point: InjectionPoint, ctx: DetectionContext, variants: List[Variant]) -> List[ProbeResult]:
        requests = [build_probe_request(ctx, point, v.materialized) for v in variants]
        futures = [self.dispatcher.submit(req, v) for req, v in zip(requests, variants)]
        self.stats["probes"] += len(futures)
        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        results = []
        for request, variant, outcome in zip(requests, variants, outcomes):
            if isinstance(outcome, AccessDenied):
                results.append(ProbeResult(request=request, variant=variant, error=str(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    def _winning_variant(self, results: List[ProbeResult], verdict: Verdict) -> Optional[Variant]:
        for result in results:
            if result.success and result.variant and isinstance(result.response, str):
                if self.analyzer.score_result(result).kind == verdict.vuln_class:
                    return result.variant
        return None

    def _report(self, point: InjectionPoint, ctx: DetectionContext, verdict: Verdict, variant: Variant) -> None:
        if self.sink is None:
            return
        parameter = ctx.parameter or point.location_path
        report = VulnReport(
            url=ctx.url or "",
            parameter=parameter,
            payload=variant.materialized,
            payload_type=verdict.vuln_class.value,
            description=(
                f"{verdict.vuln_class.value} XSS via {point.kind.value} '{parameter}' "
                f"({variant.label}, confidence {verdict.confidence:.2f})"
            ),
            confidence=verdict.confidence,
        )
        task = asyncio.create_task(self._deliver(report))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def _deliver(self, report: VulnReport) -> None:
        try:
            await self.sink.notify(report)
        except Exception as e:
            logger.error(f"Failed to deliver report for {report.url}: {e}")

    async def wait_for_notifications(self) -> None:
        """Let outstanding sink deliveries finish."""
        if self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks), return_exceptions=True)

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
