"""
WAF-aware payload transformation.

Components
----------
EncodingCodec
    Paired encoders/decoders for the url, html, js, unicode, hex and base64
    encodings and the string, eval, concat and template obfuscations.
    ``decode_all`` peels stacked encoding layers until nothing is recognised.

Bypass techniques
    String/array/object splitting and fixed/dynamic chunking, used when the
    detected WAF lists ``splitting`` or ``chunked`` among its bypasses.

EnvironmentFingerprinter
    Passive server, framework, WAF, CSP and security-header detection from
    response headers and page state, cached per origin.

Quick Start
-----------
    from xssprobe.tools.waf import EncodingCodec, EnvironmentFingerprinter

    env = EnvironmentFingerprinter().fingerprint(response.headers, {"jQuery"})
    codec = EncodingCodec()
    encoded = codec.encode("<script>alert(1)</script>", "unicode")
    assert codec.decode_all(encoded) == "<script>alert(1)</script>"
"""

from .encodings import EncodingCodec, EncodingTechnique
from .bypass import CHUNKING_TECHNIQUES, SPLITTING_TECHNIQUES, get_bypass_technique
from .fingerprinter import EnvironmentFingerprinter, WAF_SIGNATURES, filter_payloads_for_server

__all__ = [
    'EncodingCodec',
    'EncodingTechnique',
    'CHUNKING_TECHNIQUES',
    'SPLITTING_TECHNIQUES',
    'get_bypass_technique',
    'EnvironmentFingerprinter',
    'WAF_SIGNATURES',
    'filter_payloads_for_server',
]
