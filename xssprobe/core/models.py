"""
Probe Pipeline Types

Dataclasses, enums and the pydantic request model shared by the classifier,
fingerprinter, generator, dispatcher and analyzer.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field


class InjectionKind(str, Enum):
    URL_PARAM = "url_param"
    HIDDEN_FIELD = "hidden_field"
    FORM_FIELD = "form_field"
    DOM_ATTRIBUTE = "dom_attribute"
    DOM_TEXT = "dom_text"


@dataclass(frozen=True)
class InjectionPoint:
    """A candidate location where attacker-controlled data is reflected."""
    value: str
    kind: InjectionKind
    location_path: str = ""  # parameter name, "path:N" for pseudo-static segments, or a DOM path


class ContextType(str, Enum):
    HTML = "html"
    JAVASCRIPT = "javascript"
    CSS = "css"


class EncodingGuess(str, Enum):
    URL = "url"
    HTML = "html"
    UNICODE = "unicode"
    BASE64 = "base64"


@dataclass
class ElementInfo:
    """Serialisable view of a DOM element handed to the classifier."""
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    text: str = ""
    ancestors: List[str] = field(default_factory=list)  # outermost first


@dataclass
class ElementLocation:
    tag: str
    attribute: Optional[str] = None
    dom_path: str = ""


@dataclass
class Context:
    """Where in the markup the injected value lands and how it is sanitised.

    Attributes:
        types: Ordered, additive set of context types (html, javascript, css)
        sanitization_detected: Any escape function or escape pattern matched
        sanitization_methods: Names of the matched escape functions/patterns
        encoding_guess: Encoding the content appears to already carry
        sanitization_effectiveness: Escaped-token density in [0, 1]
        locations: Fine-grained markup positions (html, attribute, script, style, comment, data)
        location: Element the value was found in, when known
    """
    types: List[ContextType] = field(default_factory=list)
    sanitization_detected: bool = False
    sanitization_methods: List[str] = field(default_factory=list)
    encoding_guess: Optional[EncodingGuess] = None
    sanitization_effectiveness: float = 0.0
    locations: List[str] = field(default_factory=list)
    location: Optional[ElementLocation] = None

    @classmethod
    def unknown(cls) -> "Context":
        return cls()

    @property
    def identified(self) -> bool:
        return bool(self.types)

    @property
    def dominant(self) -> Optional[ContextType]:
        return self.types[0] if self.types else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": [t.value for t in self.types],
            "sanitization_detected": self.sanitization_detected,
            "sanitization_methods": list(self.sanitization_methods),
            "encoding_guess": self.encoding_guess.value if self.encoding_guess else None,
            "sanitization_effectiveness": self.sanitization_effectiveness,
            "locations": list(self.locations),
            "location": vars(self.location) if self.location else None,
        }


@dataclass
class WAFProfile:
    name: str
    bypass_techniques: List[str] = field(default_factory=list)


@dataclass
class Environment:
    """Passive fingerprint of the target: server, frameworks, WAF and headers."""
    server: str = "unknown"
    frameworks: Set[str] = field(default_factory=set)
    waf: Optional[WAFProfile] = None
    csp: Optional[Dict[str, List[str]]] = None
    charset: str = "utf-8"
    security_headers: Dict[str, str] = field(default_factory=dict)
    xss_protection: bool = False
    csrf_token: Optional[str] = None
    content_encoding: Optional[str] = None

    def has_technique(self, technique: str) -> bool:
        return self.waf is not None and technique in self.waf.bypass_techniques


class VulnClass(str, Enum):
    REFLECTED = "reflected"
    DOM = "dom"
    STORED = "stored"


@dataclass(frozen=True)
class Payload:
    """Base payload; ``raw_template`` embeds the ``{token}`` placeholder."""
    id: str
    vuln_class: VulnClass
    raw_template: str
    name: str = ""

    def materialize(self, token: str) -> str:
        return self.raw_template.replace("{token}", token)


class TransformFamily(str, Enum):
    ENCODING = "encoding"
    OBFUSCATION = "obfuscation"
    SPLITTING = "splitting"
    CHUNKING = "chunking"


@dataclass(frozen=True)
class TransformStep:
    family: TransformFamily
    method: str

    def __str__(self) -> str:
        return f"{self.family.value}:{self.method}"


@dataclass
class Variant:
    parent_payload_id: str
    transform_chain: List[TransformStep]
    materialized: str
    token: str
    confidence: float = 0.0

    @property
    def label(self) -> str:
        if not self.transform_chain:
            return "raw"
        return "+".join(str(step) for step in self.transform_chain)


class ProbeRequest(BaseModel):
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    retry_count: int = 0

    @property
    def signature(self) -> str:
        """Deterministic hash of (method, url, headers, body); equal requests share a cache slot."""
        canonical = json.dumps(
            [self.method.upper(), self.url, sorted(self.headers.items()), self.body],
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_curl(self) -> str:
        header_str = " ".join([f"-H '{k}: {v}'" for k, v in self.headers.items()])
        data_str = f" --data '{self.body}'" if self.body else ""
        return f"curl -X {self.method} '{self.url}' {header_str}{data_str}"


@dataclass
class ProbeResult:
    request: ProbeRequest
    response: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    variant: Optional[Variant] = None
    from_cache: bool = False
    fallback_signal: Optional[bool] = None  # set only when the primary transport gave up


class EvidenceKind(str, Enum):
    REFLECTED = "reflected"
    DOM = "dom"
    EVENT = "event"
    DATA_URI = "data-uri"


# Fixed evaluation order of the analyzer checks
EVIDENCE_ORDER: Tuple[EvidenceKind, ...] = (
    EvidenceKind.REFLECTED,
    EvidenceKind.DOM,
    EvidenceKind.EVENT,
    EvidenceKind.DATA_URI,
)


@dataclass(frozen=True)
class Evidence:
    pattern_kind: EvidenceKind
    confidence_contribution: float
    match: str = ""
    # Whether the probe's own token came back in the same response
    token_reflected: bool = False


@dataclass(frozen=True)
class Verdict:
    is_vulnerable: bool
    confidence: float
    vuln_class: Optional[EvidenceKind] = None
    evidence: Tuple[Evidence, ...] = ()
    context: Optional[Context] = None
    sanitization: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str, context: Optional[Context] = None) -> "Verdict":
        return cls(is_vulnerable=False, confidence=0.0, context=context, error=error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "is_vulnerable": self.is_vulnerable,
            "confidence": self.confidence,
            "vuln_class": self.vuln_class.value if self.vuln_class else None,
            "evidence": [
                {
                    "pattern_kind": e.pattern_kind.value,
                    "confidence": e.confidence_contribution,
                    "match": e.match,
                    "token_reflected": e.token_reflected,
                }
                for e in self.evidence
            ],
            "context": self.context.to_dict() if self.context else None,
            "sanitization": dict(self.sanitization),
            "error": self.error,
        }


@dataclass
class VulnReport:
    """Single message type accepted by vulnerability sinks."""
    url: str
    parameter: str
    payload: str
    payload_type: str
    description: str
    type: str = "XSS"
    confidence: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "url": self.url,
            "parameter": self.parameter,
            "payload": self.payload,
            "payload_type": self.payload_type,
            "description": self.description,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


@dataclass
class DetectionContext:
    """Everything ``detect`` needs besides the injection point itself.

    ``url``/``parameter`` describe where probes are sent; ``markup``/``element``
    feed the classifier; ``response_headers``/``global_flags`` feed the
    fingerprinter.
    """
    url: Optional[str] = None
    method: str = "GET"
    parameter: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    response_headers: Dict[str, str] = field(default_factory=dict)
    global_flags: Set[str] = field(default_factory=set)
    markup: str = ""
    element: Optional[ElementInfo] = None
    vuln_class: Optional[VulnClass] = None
