"""
Context Analyzer - Classifies WHERE an injected value lands in the markup.

Pattern tables are data: each context type owns an ordered list of regexes
and attribute names, and a value can sit in several contexts at once (an
``onclick`` attribute is both HTML and JavaScript). Sanitisation is
detected from escape-function names and from the density of escaped tokens
in the content.
"""

import re
from typing import Dict, List, Optional

from xssprobe.core.exceptions import ClassificationFailure, wrap_exception
from xssprobe.core.models import (
    Context,
    ContextType,
    ElementInfo,
    ElementLocation,
    EncodingGuess,
)
from xssprobe.utils.logger import get_logger

logger = get_logger("tools.context_analyzer")

INJECTABLE_ATTRIBUTES = [
    "href", "src", "onerror", "onload", "onclick",
    "onmouseover", "onmouseout", "onkeypress",
    "onkeydown", "onkeyup", "onfocus", "onblur", "style",
]


class ContextClassifier:
    """
    Classifies markup (and optionally the element holding it) into context
    types, detects sanitisation and guesses the content's encoding.

    Pure: no I/O, and ``classify`` never raises.
    """

    CONTEXT_PATTERNS: Dict[ContextType, List[re.Pattern]] = {
        ContextType.HTML: [
            re.compile(r"<[^>]*>"),
            re.compile(r"&[a-zA-Z]+;"),
            re.compile(r"&#x?[0-9a-fA-F]+;"),
        ],
        ContextType.JAVASCRIPT: [
            re.compile(r"<script[^>]*>[\s\S]*?</script>", re.I),
            re.compile(r"javascript:", re.I),
            re.compile(r"on\w+\s*=", re.I),
            re.compile(r"eval\s*\(", re.I),
            re.compile(r"Function\s*\(", re.I),
            re.compile(r"setTimeout\s*\(", re.I),
            re.compile(r"setInterval\s*\(", re.I),
        ],
        ContextType.CSS: [
            re.compile(r"<style[^>]*>[\s\S]*?</style>", re.I),
            re.compile(r"style\s*=\s*[\"'][^\"']*[\"']", re.I),
            re.compile(r"url\s*\(", re.I),
            re.compile(r"expression\s*\(", re.I),
            re.compile(r"@import", re.I),
        ],
    }

    CONTEXT_ATTRIBUTES: Dict[ContextType, List[str]] = {
        ContextType.HTML: [
            "href", "src", "onerror", "onload", "onclick",
            "onmouseover", "onmouseout", "onkeypress",
            "onkeydown", "onkeyup", "onfocus", "onblur",
        ],
        ContextType.JAVASCRIPT: [
            "onerror", "onload", "onclick", "onmouseover",
            "onmouseout", "onkeypress", "onkeydown", "onkeyup",
        ],
        ContextType.CSS: ["style"],
    }

    CONTEXT_TAGS: Dict[ContextType, str] = {
        ContextType.JAVASCRIPT: "script",
        ContextType.CSS: "style",
    }

    # Fine-grained positions within the markup
    LOCATION_PATTERNS: Dict[str, re.Pattern] = {
        "html": re.compile(r"<[^>]*>"),
        "attribute": re.compile(r"[a-zA-Z-]+=[\"']"),
        "script": re.compile(r"<script[^>]*>", re.I),
        "style": re.compile(r"<style[^>]*>", re.I),
        "comment": re.compile(r"<!--[\s\S]*?-->"),
        "data": re.compile(r"data:[^;]+;base64,"),
    }

    SANITIZATION_PATTERNS: List[re.Pattern] = [
        re.compile(r"htmlspecialchars", re.I),
        re.compile(r"htmlentities", re.I),
        re.compile(r"strip_tags", re.I),
        re.compile(r"sanitize", re.I),
        re.compile(r"escape\s*\(", re.I),
        re.compile(r"encodeURI\s*\(", re.I),
        re.compile(r"encodeURIComponent\s*\(", re.I),
        re.compile(r"clean\s*\(", re.I),
        re.compile(r"purify\s*\(", re.I),
    ]

    SANITIZATION_FUNCTIONS: List[str] = [
        "escapeHTML", "sanitizeHTML", "cleanHTML", "purifyHTML",
        "escapeJS", "sanitizeJS", "cleanJS", "purifyJS",
        "sanitizeCSS", "cleanCSS", "purifyCSS",
    ]

    # Tokens left behind by escaping; their density is the effectiveness score
    ESCAPED_TOKEN_PATTERNS: Dict[str, re.Pattern] = {
        "html_escape": re.compile(r"&[a-zA-Z]+;"),
        "js_escape": re.compile(r"\\[^a-zA-Z]"),
        "url_encode": re.compile(r"%[0-9A-Fa-f]{2}"),
    }

    HIGH_EFFECTIVENESS_MARKERS = ["htmlspecialchars", "htmlentities", "strip_tags", "escape", "encodeURI", "sanitizeCSS"]

    def classify(self, markup: str, element: Optional[ElementInfo] = None) -> Context:
        """
        Classify ``markup`` (the element's serialized content when an element
        is given). Malformed input degrades to ``Context.unknown()``.
        """
        try:
            return self._classify(markup, element)
        except Exception as e:
            failure = e if isinstance(e, ClassificationFailure) else wrap_exception(e, ClassificationFailure)
            logger.warning(f"Context classification failed, using unknown context: {failure}")
            return Context.unknown()

    def _classify(self, markup: str, element: Optional[ElementInfo]) -> Context:
        if markup is None:
            markup = ""
        if not isinstance(markup, str):
            raise ClassificationFailure(f"markup must be text, got {type(markup).__name__}")
        content = markup or (element.text if element else "")

        context = Context()
        context.types = self.detect_context_types(content, element)
        context.locations = [name for name, p in self.LOCATION_PATTERNS.items() if p.search(content)]

        methods = self.detect_sanitization(content)
        if methods:
            context.sanitization_detected = True
            context.sanitization_methods = methods
            context.sanitization_effectiveness = self.sanitization_effectiveness(content)

        context.encoding_guess = self.detect_content_encoding(content)
        if element is not None:
            context.location = self.analyze_location(element)
        return context

    def detect_context_types(self, content: str, element: Optional[ElementInfo] = None) -> List[ContextType]:
        types = []
        tag = element.tag.lower() if element else ""
        attr_names = {a.lower() for a in element.attributes} if element else set()
        for ctx_type, patterns in self.CONTEXT_PATTERNS.items():
            if tag and tag == self.CONTEXT_TAGS.get(ctx_type):
                types.append(ctx_type)
            elif attr_names & set(self.CONTEXT_ATTRIBUTES[ctx_type]):
                types.append(ctx_type)
            elif any(p.search(content) for p in patterns):
                types.append(ctx_type)
        return types

    def detect_sanitization(self, content: str) -> List[str]:
        """Names of matched escape functions, escape patterns and escaped-token kinds."""
        methods = []
        for pattern in self.SANITIZATION_PATTERNS:
            if pattern.search(content):
                methods.append(pattern.pattern)
        for func in self.SANITIZATION_FUNCTIONS:
            if func in content:
                methods.append(func)
        for name, pattern in self.ESCAPED_TOKEN_PATTERNS.items():
            if pattern.search(content):
                methods.append(name)
        return methods

    def sanitization_effectiveness(self, content: str) -> float:
        if not content:
            return 0.0
        escaped = sum(len(p.findall(content)) for p in self.ESCAPED_TOKEN_PATTERNS.values())
        return max(0.0, min(1.0, escaped / len(content)))

    def effectiveness_level(self, methods: List[str]) -> str:
        if any(marker in m for m in methods for marker in self.HIGH_EFFECTIVENESS_MARKERS):
            return "high"
        return "unknown"

    def detect_content_encoding(self, content: str) -> Optional[EncodingGuess]:
        if len(content) >= 8 and len(content) % 4 == 0 and re.fullmatch(r"[A-Za-z0-9+/=]+", content):
            return EncodingGuess.BASE64
        if re.search(r"%[0-9A-Fa-f]{2}", content):
            return EncodingGuess.URL
        if re.search(r"&[a-zA-Z]+;", content):
            return EncodingGuess.HTML
        if re.search(r"\\[xX][0-9A-Fa-f]{2}|\\u[0-9A-Fa-f]{4}", content):
            return EncodingGuess.UNICODE
        return None

    def analyze_location(self, element: ElementInfo) -> ElementLocation:
        attribute = next((a for a in element.attributes if is_injectable_attribute(a)), None)
        return ElementLocation(
            tag=element.tag.lower(),
            attribute=attribute,
            dom_path=" > ".join(element.ancestors + [_selector(element.tag, element.attributes)]),
        )

    def recommendations(self, context: Context) -> List[Dict[str, str]]:
        """Payload-selection hints for a classified context."""
        recs = [
            {"type": "context", "description": f"Use appropriate payload for {t.value} context", "priority": "high"}
            for t in context.types
        ]
        if context.location and context.location.attribute:
            recs.append({
                "type": "location",
                "description": f"Consider attribute-specific payload for {context.location.attribute}",
                "priority": "medium",
            })
        if context.sanitization_detected:
            level = self.effectiveness_level(context.sanitization_methods)
            recs.append({
                "type": "sanitization",
                "description": f"Bypass detected sanitization ({level}): {', '.join(context.sanitization_methods)}",
                "priority": "high",
            })
        if context.encoding_guess:
            recs.append({
                "type": "encoding",
                "description": f"Content already looks {context.encoding_guess.value}-encoded",
                "priority": "medium",
            })
        return recs


def is_injectable_attribute(name: str) -> bool:
    name = name.lower()
    return name in INJECTABLE_ATTRIBUTES or name.startswith("data-")


def _selector(tag: str, attributes: Dict[str, str]) -> str:
    selector = tag.lower()
    if attributes.get("id"):
        selector += f"#{attributes['id']}"
    if attributes.get("class"):
        selector += "." + ".".join(attributes["class"].split())
    return selector


def element_from_tag(tag) -> ElementInfo:
    """Build an ElementInfo from a BeautifulSoup Tag."""
    attributes = {
        name: " ".join(value) if isinstance(value, list) else str(value)
        for name, value in tag.attrs.items()
    }
    ancestors = []
    for parent in tag.parents:
        if parent.name in (None, "[document]"):
            continue
        parent_attrs = {
            k: " ".join(v) if isinstance(v, list) else str(v) for k, v in parent.attrs.items()
        }
        ancestors.insert(0, _selector(parent.name, parent_attrs))
    return ElementInfo(
        tag=tag.name,
        attributes=attributes,
        text=tag.decode_contents(),
        ancestors=ancestors,
    )
