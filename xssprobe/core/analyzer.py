"""
Result Analyzer - scores probe responses for evidence of injection.

Every successful result runs the ordered checks below; each check may match
independently. A result takes the type and weight of the last matching check
whose weight is at least the running maximum, so with equal weights the later
check wins. Across results the verdict keeps the maximum confidence, and the
verdict type comes from the highest-confidence result with ties broken by the
fixed precedence reflected > dom > event > data-uri.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from xssprobe.core.config import settings
from xssprobe.core.exceptions import AnalysisFailure
from xssprobe.core.models import (
    EVIDENCE_ORDER,
    Context,
    Evidence,
    EvidenceKind,
    ProbeResult,
    Verdict,
)
from xssprobe.tools.context_analyzer import ContextClassifier
from xssprobe.tools.waf.encodings import EncodingCodec
from xssprobe.utils.logger import get_logger

logger = get_logger("core.analyzer")

# Characters either side of the reflected value inspected for sanitization
SANITIZATION_WINDOW = 64


@dataclass
class ResultScore:
    """Evidence found in a single probe result."""
    kind: Optional[EvidenceKind] = None
    confidence: float = 0.0
    evidence: List[Evidence] = field(default_factory=list)


class ResultAnalyzer:
    """
    Usage:
        analyzer = ResultAnalyzer()
        verdict = analyzer.analyze(results, original_input="'><script>alert(1)</script>")
        report = analyzer.generate_report(verdict)
    """

    EVIDENCE_PATTERNS: Dict[EvidenceKind, re.Pattern] = {
        EvidenceKind.REFLECTED: re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        EvidenceKind.DOM: re.compile(r"document\.write|innerHTML|outerHTML|insertAdjacentHTML", re.IGNORECASE),
        EvidenceKind.EVENT: re.compile(r"on\w+\s*=", re.IGNORECASE),
        EvidenceKind.DATA_URI: re.compile(r"data:\s*text/html", re.IGNORECASE),
    }

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        threshold: Optional[float] = None,
        classifier: Optional[ContextClassifier] = None,
    ):
        weights = weights or settings.EVIDENCE_WEIGHTS
        self.weights: Dict[EvidenceKind, float] = {kind: float(weights[kind.value]) for kind in EVIDENCE_ORDER}
        self.threshold = settings.VULNERABLE_THRESHOLD if threshold is None else threshold
        self.classifier = classifier or ContextClassifier()
        self.codec = EncodingCodec()

    def analyze(
        self,
        results: Iterable[ProbeResult],
        original_input: str,
        context: Optional[Context] = None,
    ) -> Verdict:
        best: Optional[ResultScore] = None
        evidence: List[Evidence] = []
        sanitization: Dict[str, Any] = {}

        for result in results:
            if not result.success:
                continue
            try:
                score = self.score_result(result)
            except AnalysisFailure as e:
                logger.warning(f"Skipping malformed result for {result.request.url}: {e}")
                continue

            evidence.extend(score.evidence)
            if score.kind is not None and self._outranks(score, best):
                best = score
            if not sanitization:
                sanitization = self.inspect_sanitization(result.response, original_input, result)

        confidence = max(0.0, min(1.0, best.confidence)) if best else 0.0
        verdict = Verdict(
            is_vulnerable=confidence >= self.threshold,
            confidence=confidence,
            vuln_class=best.kind if best else None,
            evidence=tuple(evidence),
            context=context,
            sanitization=sanitization,
        )
        if verdict.is_vulnerable:
            logger.info(f"Vulnerable: {verdict.vuln_class.value} ({verdict.confidence:.2f})")
        return verdict

    def score_result(self, result: ProbeResult) -> ResultScore:
        """Run every check against one response."""
        if not isinstance(result.response, str):
            raise AnalysisFailure(
                f"Response is {type(result.response).__name__}, expected str",
                context={"url": result.request.url},
            )

        score = ResultScore()
        reflected = self.token_reflected(result)
        for kind in EVIDENCE_ORDER:
            match = self.EVIDENCE_PATTERNS[kind].search(result.response)
            if not match:
                continue
            weight = self.weights[kind]
            score.evidence.append(Evidence(
                pattern_kind=kind,
                confidence_contribution=weight,
                match=match.group(0)[:200],
                token_reflected=reflected,
            ))
            if weight >= score.confidence:
                score.kind = kind
                score.confidence = weight
        return score

    def token_reflected(self, result: ProbeResult) -> bool:
        """True when the variant's token, or its decoded payload, is in the response."""
        variant = result.variant
        if variant is None:
            return False
        if variant.token and variant.token in result.response:
            return True
        return bool(variant.materialized) and self.codec.validate_encoded_payload(variant.materialized, result.response)

    def _outranks(self, score: ResultScore, best: Optional[ResultScore]) -> bool:
        if best is None or score.confidence > best.confidence:
            return True
        if score.confidence < best.confidence:
            return False
        return EVIDENCE_ORDER.index(score.kind) < EVIDENCE_ORDER.index(best.kind)

    def inspect_sanitization(self, response: str, original_input: str, result: ProbeResult) -> Dict[str, Any]:
        """Escape methods and density around where the probe landed; reported only."""
        token = result.variant.token if result.variant else None
        anchor = -1
        for needle in (original_input, token):
            if needle:
                anchor = response.find(needle)
                if anchor != -1:
                    break

        if anchor == -1:
            window = response[:SANITIZATION_WINDOW * 2]
        else:
            window = response[max(0, anchor - SANITIZATION_WINDOW):anchor + len(original_input) + SANITIZATION_WINDOW]

        methods = self.classifier.detect_sanitization(window)
        return {
            "reflected": anchor != -1,
            "detected": bool(methods),
            "methods": methods,
            "effectiveness": self.classifier.sanitization_effectiveness(window) if methods else 0.0,
        }

    def generate_report(self, verdict: Verdict, original_input: str = "") -> Dict[str, Any]:
        return {
            "summary": {
                "is_vulnerable": verdict.is_vulnerable,
                "confidence": verdict.confidence,
                "type": verdict.vuln_class.value if verdict.vuln_class else None,
            },
            "details": {
                "input": original_input,
                "evidence": verdict.to_dict()["evidence"],
                "sanitization": dict(verdict.sanitization),
                "error": verdict.error,
                "timestamp": datetime.now().isoformat(),
            },
            "recommendations": self.generate_recommendations(verdict),
            "context_hints": self.classifier.recommendations(verdict.context) if verdict.context else [],
        }

    def generate_recommendations(self, verdict: Verdict) -> List[Dict[str, str]]:
        recs = []
        if verdict.confidence > 0.8:
            recs.append({
                "type": "critical",
                "message": "High-risk XSS found, fix immediately",
                "action": "Validate input and encode output",
            })
        elif verdict.confidence > 0.5:
            recs.append({
                "type": "warning",
                "message": "Potential XSS found, review recommended",
                "action": "Strengthen input validation and output encoding",
            })

        if verdict.vuln_class == EvidenceKind.REFLECTED:
            recs.append({
                "type": "info",
                "message": "Deploy a Content Security Policy",
                "action": "Configure the Content-Security-Policy header",
            })
        elif verdict.vuln_class == EvidenceKind.DOM:
            recs.append({
                "type": "info",
                "message": "Use safe DOM APIs",
                "action": "Use textContent instead of innerHTML",
            })
        return recs

