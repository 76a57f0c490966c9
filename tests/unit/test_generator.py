"""
Unit tests for the payload catalog and VariantGenerator.
"""

import pytest

from xssprobe.core.exceptions import GenerationError
from xssprobe.core.models import (
    Context,
    ContextType,
    Environment,
    TransformFamily,
    VulnClass,
    WAFProfile,
)
from xssprobe.tools.payloads.catalog import BASE_PAYLOADS, PayloadCatalog
from xssprobe.tools.payloads.generator import GenerationOptions, VariantGenerator, score_confidence

TOKEN = "1712345678901042"


class TestPayloadCatalog:
    """Base payload lookup and context-aware selection."""

    @pytest.fixture
    def catalog(self):
        return PayloadCatalog()

    def test_every_template_carries_token(self):
        for entries in BASE_PAYLOADS.values():
            for payload in entries:
                assert "{token}" in payload.raw_template, payload.id

    def test_select_without_context_returns_first(self, catalog):
        assert catalog.select(VulnClass.REFLECTED, Context.unknown()).id == "r-script"

    def test_select_prefers_javascript_sinks(self, catalog):
        context = Context(types=[ContextType.JAVASCRIPT])
        assert catalog.select(VulnClass.DOM, context).id == "d-write"

    def test_select_prefers_css_templates(self, catalog):
        context = Context(types=[ContextType.CSS])
        assert catalog.select("reflected", context).id == "r-style"

    def test_invalid_class_raises(self, catalog):
        with pytest.raises(GenerationError):
            catalog.select("persistent", Context.unknown())

    def test_get_by_id(self, catalog):
        assert catalog.get("s-cookie").vuln_class == VulnClass.STORED
        with pytest.raises(GenerationError):
            catalog.get("nope")


class TestScoreConfidence:

    def test_base_score(self):
        assert score_confidence("short", False, False) == pytest.approx(0.5)

    def test_all_bonuses(self):
        assert score_confidence("<script>alert(1)</script>", True, True) == pytest.approx(0.9)

    def test_length_bonus_needs_more_than_ten(self):
        assert score_confidence("a" * 10, True, False) == pytest.approx(0.7)
        assert score_confidence("a" * 11, True, False) == pytest.approx(0.8)


class TestVariantGenerator:
    """Variants are independent single transforms of the materialised payload."""

    @pytest.fixture
    def generator(self):
        return VariantGenerator()

    @pytest.fixture
    def payload(self):
        return PayloadCatalog().get("r-script")

    def test_raw_variant_first(self, generator, payload):
        variants = generator.generate(payload, Context.unknown(), Environment(), TOKEN)
        assert variants[0].label == "raw"
        assert variants[0].materialized == f"<script>alert({TOKEN})</script>"

    def test_every_variant_recovers_token(self, generator, payload):
        env = Environment(waf=WAFProfile("cloudflare", ["encoding", "obfuscation", "splitting", "chunked"]))
        variants = generator.generate(payload, Context.unknown(), env, TOKEN)
        for variant in variants:
            assert variant.token == TOKEN
            assert generator.token_recoverable(variant), variant.label

    def test_no_waf_means_no_bypass_families(self, generator, payload):
        variants = generator.generate(payload, Context.unknown(), Environment(), TOKEN)
        families = {step.family for v in variants for step in v.transform_chain}
        assert families == {TransformFamily.ENCODING, TransformFamily.OBFUSCATION}
        assert len(variants) == 1 + 6 + 4

    def test_waf_adds_splitting_and_chunking(self, generator, payload):
        env = Environment(waf=WAFProfile("cloudflare", ["splitting", "chunked"]))
        variants = generator.generate(payload, Context.unknown(), env, TOKEN)
        labels = {v.label for v in variants}
        assert {"splitting:string", "splitting:array", "splitting:object"} <= labels
        assert {"chunking:fixed", "chunking:dynamic"} <= labels

    def test_waf_without_chunked_skips_chunking(self, generator, payload):
        env = Environment(waf=WAFProfile("modsecurity", ["encoding", "obfuscation", "splitting"]))
        variants = generator.generate(payload, Context.unknown(), env, TOKEN)
        assert not any(v.label.startswith("chunking") for v in variants)

    def test_confidence_reflects_context_and_waf(self, generator, payload):
        context = Context(types=[ContextType.HTML])
        env = Environment(waf=WAFProfile("generic", ["encoding"]))
        raw = generator.generate(payload, context, env, TOKEN)[0]
        assert raw.confidence == pytest.approx(0.9)

    def test_options_disable_families(self, generator, payload):
        options = GenerationOptions(include_raw=False, obfuscation=False)
        variants = generator.generate(payload, Context.unknown(), Environment(), TOKEN, options)
        assert [v.label for v in variants] == [
            "encoding:url", "encoding:html", "encoding:js",
            "encoding:unicode", "encoding:hex", "encoding:base64",
        ]

    def test_recover_undoes_transform(self, generator, payload):
        variants = generator.generate(payload, Context.unknown(), Environment(), TOKEN)
        base64_variant = next(v for v in variants if v.label == "encoding:base64")
        assert generator.recover(base64_variant) == payload.materialize(TOKEN)

    def test_server_filtering_drops_mangled_variants(self, generator, payload):
        env = Environment(server="nginx")
        options = GenerationOptions(server_filtering=True)
        variants = generator.generate(payload, Context.unknown(), env, TOKEN, options)
        assert all("\\" not in v.materialized and "$" not in v.materialized for v in variants)
        assert not any(v.label in ("encoding:unicode", "encoding:hex") for v in variants)
