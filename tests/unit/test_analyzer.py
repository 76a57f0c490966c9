"""
Unit tests for ResultAnalyzer.
"""

import pytest

from xssprobe.core.analyzer import ResultAnalyzer
from xssprobe.core.models import (
    EvidenceKind,
    ProbeRequest,
    ProbeResult,
    Variant,
    Verdict,
)

INPUT = "<script>alert(1)</script>"


def result(response, success=True, token=None):
    variant = Variant("r-script", [], response if isinstance(response, str) else "", token) if token else None
    return ProbeResult(
        request=ProbeRequest(url="https://example.com/?q=x"),
        response=response,
        success=success,
        variant=variant,
    )


@pytest.fixture
def analyzer():
    return ResultAnalyzer()


class TestScoring:
    """Evidence checks and their weights."""

    def test_reflected_script_is_vulnerable(self, analyzer):
        verdict = analyzer.analyze([result(f"<html>{INPUT}</html>")], INPUT)
        assert verdict.is_vulnerable is True
        assert verdict.confidence == pytest.approx(0.8)
        assert verdict.vuln_class == EvidenceKind.REFLECTED

    def test_dom_sink_alone_is_not_vulnerable(self, analyzer):
        verdict = analyzer.analyze([result("document.write(location.hash)")], INPUT)
        assert verdict.is_vulnerable is False
        assert verdict.confidence == pytest.approx(0.7)
        assert verdict.vuln_class == EvidenceKind.DOM

    def test_event_handler(self, analyzer):
        verdict = analyzer.analyze([result('<img src=x onerror=alert(1)>')], INPUT)
        assert verdict.vuln_class == EvidenceKind.EVENT
        assert verdict.confidence == pytest.approx(0.6)

    def test_data_uri(self, analyzer):
        verdict = analyzer.analyze([result('<iframe src="data:text/html,hi">')], INPUT)
        assert verdict.vuln_class == EvidenceKind.DATA_URI
        assert verdict.confidence == pytest.approx(0.5)

    def test_no_evidence(self, analyzer):
        verdict = analyzer.analyze([result("<p>nothing here</p>")], INPUT)
        assert verdict.is_vulnerable is False
        assert verdict.confidence == 0.0
        assert verdict.vuln_class is None
        assert verdict.evidence == ()

    def test_all_matching_checks_recorded(self, analyzer):
        verdict = analyzer.analyze([result("<script>x.innerHTML=1</script><b onclick=f()>")], INPUT)
        kinds = [e.pattern_kind for e in verdict.evidence]
        assert kinds == [EvidenceKind.REFLECTED, EvidenceKind.DOM, EvidenceKind.EVENT]
        assert verdict.vuln_class == EvidenceKind.REFLECTED

    def test_highest_confidence_across_results(self, analyzer):
        results = [result("document.write(1)"), result(INPUT), result("<b onclick=f()>")]
        verdict = analyzer.analyze(results, INPUT)
        assert verdict.vuln_class == EvidenceKind.REFLECTED
        assert verdict.confidence == pytest.approx(0.8)

    def test_result_order_does_not_change_verdict(self, analyzer):
        results = [result("document.write(1)"), result(INPUT), result("<b onclick=f()>")]
        forward = analyzer.analyze(results, INPUT)
        backward = analyzer.analyze(list(reversed(results)), INPUT)
        assert (forward.is_vulnerable, forward.confidence, forward.vuln_class) == (
            backward.is_vulnerable, backward.confidence, backward.vuln_class
        )

    def test_threshold_override(self):
        analyzer = ResultAnalyzer(threshold=0.7)
        assert analyzer.analyze([result("document.write(1)")], INPUT).is_vulnerable is True


class TestTieBreaking:
    """Equal weights: the later check wins within a result, precedence across results."""

    @pytest.fixture
    def flat_analyzer(self):
        return ResultAnalyzer(weights={"reflected": 0.6, "dom": 0.6, "event": 0.6, "data-uri": 0.6})

    def test_later_check_wins_within_result(self, flat_analyzer):
        verdict = flat_analyzer.analyze([result("<script>a</script><b onclick=f()>")], INPUT)
        assert verdict.vuln_class == EvidenceKind.EVENT

    def test_precedence_across_results(self, flat_analyzer):
        results = [result("<b onclick=f()>"), result("x.innerHTML = y")]
        assert flat_analyzer.analyze(results, INPUT).vuln_class == EvidenceKind.DOM
        assert flat_analyzer.analyze(list(reversed(results)), INPUT).vuln_class == EvidenceKind.DOM


class TestResultFiltering:
    """Only successful, well-formed results contribute evidence."""

    def test_failed_results_ignored(self, analyzer):
        verdict = analyzer.analyze([result(INPUT, success=False)], INPUT)
        assert verdict.confidence == 0.0

    def test_fallback_signal_is_not_evidence(self, analyzer):
        failed = result(None, success=False)
        failed.fallback_signal = True
        verdict = analyzer.analyze([failed], INPUT)
        assert verdict.is_vulnerable is False
        assert verdict.evidence == ()

    def test_malformed_response_skipped(self, analyzer):
        verdict = analyzer.analyze([result(b"<script>x</script>"), result("document.write(1)")], INPUT)
        assert verdict.vuln_class == EvidenceKind.DOM

    def test_empty_results(self, analyzer):
        verdict = analyzer.analyze([], INPUT)
        assert verdict.is_vulnerable is False
        assert verdict.confidence == 0.0


class TestSanitization:

    def test_reflected_token_reported(self, analyzer):
        body = "<p>you searched 1700000000000123 &lt;b&gt;</p>"
        verdict = analyzer.analyze([result(body, token="1700000000000123")], "<b>")
        assert verdict.sanitization["reflected"] is True
        assert verdict.sanitization["detected"] is True
        assert "html_escape" in verdict.sanitization["methods"]

    def test_absent_input_not_reflected(self, analyzer):
        verdict = analyzer.analyze([result("<p>hello</p>")], "<svg onload=x>")
        assert verdict.sanitization["reflected"] is False
        assert verdict.sanitization["detected"] is False


class TestReport:
    """generate_report summary and recommendations."""

    def test_critical_recommendation(self, analyzer):
        verdict = Verdict(is_vulnerable=True, confidence=0.9, vuln_class=EvidenceKind.REFLECTED)
        report = analyzer.generate_report(verdict, INPUT)
        types = [r["type"] for r in report["recommendations"]]
        assert types == ["critical", "info"]
        assert report["summary"] == {"is_vulnerable": True, "confidence": 0.9, "type": "reflected"}
        assert report["details"]["input"] == INPUT

    def test_warning_for_dom(self, analyzer):
        verdict = Verdict(is_vulnerable=False, confidence=0.7, vuln_class=EvidenceKind.DOM)
        recs = analyzer.generate_recommendations(verdict)
        assert recs[0]["type"] == "warning"
        assert "textContent" in recs[1]["action"]

    def test_exact_threshold_has_no_severity(self, analyzer):
        verdict = Verdict(is_vulnerable=True, confidence=0.8, vuln_class=EvidenceKind.EVENT)
        assert [r["type"] for r in analyzer.generate_recommendations(verdict)] == ["warning"]

    def test_low_confidence_has_no_recommendations(self, analyzer):
        assert analyzer.generate_recommendations(Verdict(is_vulnerable=False, confidence=0.0)) == []


class TestTokenReflection:
    """Evidence records whether the probe's own token came back."""

    def test_page_script_without_token(self, analyzer):
        page = "<html><script>var cfg = {};</script></html>"
        verdict = analyzer.analyze([result(page, token="1712345678901007")], INPUT)
        assert verdict.vuln_class == EvidenceKind.REFLECTED
        assert verdict.evidence[0].token_reflected is False
        assert verdict.to_dict()["evidence"][0]["token_reflected"] is False

    def test_reflected_token(self, analyzer):
        page = "<html><script>alert(1712345678901007)</script></html>"
        verdict = analyzer.analyze([result(page, token="1712345678901007")], INPUT)
        assert all(e.token_reflected for e in verdict.evidence)

    def test_encoded_variant_decoded_in_response(self, analyzer):
        variant = Variant("r-script", [], "%3Cb%3E1712%3C%2Fb%3E", "9999")
        probe_result = ProbeResult(
            request=ProbeRequest(url="https://example.com/?q=x"),
            response="<p><b>1712</b> onload=x</p>",
            success=True,
            variant=variant,
        )
        assert analyzer.token_reflected(probe_result) is True

    def test_no_variant(self, analyzer):
        assert analyzer.token_reflected(result("<p>x</p>")) is False


class TestContextHints:

    def test_report_carries_context_hints(self, analyzer):
        context = analyzer.classifier.classify("<div>hi</div>")
        verdict = analyzer.analyze([result(f"<html>{INPUT}</html>")], INPUT, context)
        report = analyzer.generate_report(verdict, INPUT)
        assert {"type": "context", "description": "Use appropriate payload for html context", "priority": "high"} in report["context_hints"]

    def test_no_context_no_hints(self, analyzer):
        report = analyzer.generate_report(Verdict(is_vulnerable=False, confidence=0.0))
        assert report["context_hints"] == []
