"""
Variant Generator - expands one base payload into transformed variants.

Each transform is applied independently to the materialised payload: the
full encoding table, the full obfuscation table, and, when the detected WAF
calls for them, splitting and chunking. Variants whose token cannot be
recovered by running their transform chain backwards are dropped.
"""

from dataclasses import dataclass
from typing import List, Optional

from xssprobe.core.models import (
    Context,
    Environment,
    Payload,
    TransformFamily,
    TransformStep,
    Variant,
)
from xssprobe.tools.waf.bypass import CHUNKING_TECHNIQUES, SPLITTING_TECHNIQUES, get_bypass_technique
from xssprobe.tools.waf.encodings import EncodingCodec, EncodingTechnique
from xssprobe.tools.waf.fingerprinter import filter_payloads_for_server
from xssprobe.utils.logger import get_logger

logger = get_logger("payloads.generator")


@dataclass
class GenerationOptions:
    include_raw: bool = True
    encoding: bool = True
    obfuscation: bool = True
    waf_aware: bool = True
    server_filtering: bool = False


def score_confidence(payload: str, context_identified: bool, waf_identified: bool) -> float:
    """0.5 base, +0.2 with a known context, +0.1 with a known WAF, +0.1 for payloads longer than 10."""
    confidence = 0.5
    if context_identified:
        confidence += 0.2
    if waf_identified:
        confidence += 0.1
    if len(payload) > 10:
        confidence += 0.1
    return min(confidence, 1.0)


class VariantGenerator:
    """
    Usage:
        generator = VariantGenerator()
        variants = generator.generate(payload, context, environment, token="1712345678901")
    """

    def __init__(self, codec: Optional[EncodingCodec] = None):
        self.codec = codec or EncodingCodec()

    def generate(
        self,
        payload: Payload,
        context: Context,
        environment: Environment,
        token: str,
        options: Optional[GenerationOptions] = None,
    ) -> List[Variant]:
        options = options or GenerationOptions()
        base = payload.materialize(token)

        steps: List[TransformStep] = []
        if options.encoding:
            steps += [TransformStep(TransformFamily.ENCODING, m) for m in self.codec.ENCODING_METHODS]
        if options.obfuscation:
            steps += [TransformStep(TransformFamily.OBFUSCATION, m) for m in self.codec.OBFUSCATION_METHODS]
        if options.waf_aware and environment.has_technique("splitting"):
            steps += [TransformStep(TransformFamily.SPLITTING, m) for m in SPLITTING_TECHNIQUES]
        if options.waf_aware and environment.has_technique("chunked"):
            steps += [TransformStep(TransformFamily.CHUNKING, m) for m in CHUNKING_TECHNIQUES]

        waf_identified = environment.waf is not None
        variants: List[Variant] = []
        if options.include_raw:
            variants.append(self._variant(payload, [], base, token, context, waf_identified))

        for step in steps:
            technique = self._technique(step)
            materialized = technique.encoder(base)
            variant = self._variant(payload, [step], materialized, token, context, waf_identified)
            if not self.token_recoverable(variant):
                logger.warning(f"Dropping variant {variant.label} of {payload.id}: token not recoverable")
                continue
            variants.append(variant)

        if options.server_filtering:
            allowed = set(filter_payloads_for_server([v.materialized for v in variants], environment))
            variants = [v for v in variants if v.materialized in allowed]

        logger.debug(f"Generated {len(variants)} variants for {payload.id}")
        return variants

    def recover(self, variant: Variant) -> str:
        """Undo the variant's transform chain."""
        text = variant.materialized
        for step in reversed(variant.transform_chain):
            text = self._technique(step).decoder(text)
        return text

    def token_recoverable(self, variant: Variant) -> bool:
        try:
            return variant.token in self.recover(variant)
        except ValueError:
            return False

    def _technique(self, step: TransformStep) -> EncodingTechnique:
        if step.family in (TransformFamily.SPLITTING, TransformFamily.CHUNKING):
            return get_bypass_technique(step.family, step.method)
        return self.codec.get_technique(step.family, step.method)

    def _variant(self, payload, chain, materialized, token, context, waf_identified) -> Variant:
        return Variant(
            parent_payload_id=payload.id,
            transform_chain=list(chain),
            materialized=materialized,
            token=token,
            confidence=score_confidence(materialized, context.identified, waf_identified),
        )
