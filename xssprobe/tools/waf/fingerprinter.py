"""
Environment Fingerprinter - passive identification of the target stack.

Techniques:
1. Server / X-Powered-By header substrings
2. Framework markers (global names, DOM attributes, inline script patterns)
3. WAF header names and values
4. Security header, CSP and charset extraction

Nothing here touches the network: everything is read from the response
headers and page state the caller already has.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set
from urllib.parse import urlparse

from xssprobe.core.config import settings
from xssprobe.core.models import Environment, WAFProfile
from xssprobe.utils.logger import get_logger

logger = get_logger("waf.fingerprinter")

# Cache TTL in seconds (15 minutes)
CACHE_TTL_SECONDS = 900

SERVER_SIGNATURES: Dict[str, List[str]] = {
    "apache": ["apache"],
    "nginx": ["nginx"],
    "iis": ["iis", "asp.net"],
    "tomcat": ["tomcat", "jsp"],
    "jetty": ["jetty"],
}

SECURITY_HEADERS = [
    "X-XSS-Protection",
    "X-Frame-Options",
    "X-Content-Type-Options",
    "Content-Security-Policy",
    "Strict-Transport-Security",
]

CSRF_HEADERS = ["X-CSRF-Token", "XSRF-TOKEN", "X-XSRF-TOKEN"]

# Inline-script / attribute evidence of a framework in the page itself
FRAMEWORK_MARKUP_PATTERNS: Dict[str, List[re.Pattern]] = {
    "react": [re.compile(p) for p in (r"React\.version", r"__REACT_DEVTOOLS_GLOBAL_HOOK__", r"ReactDOM", r"data-reactroot")],
    "angular": [re.compile(p) for p in (r"ng\.version", r"angular\.version", r"\bng-app\b", r"\bng-controller\b", r"\bng-model\b")],
    "vue": [re.compile(p) for p in (r"Vue\.version", r"\bv-model\b", r"\bv-for\b", r"\bv-if\b")],
    "jquery": [re.compile(p) for p in (r"jQuery\.fn\.jquery", r"\$\.fn\.jquery", r"\$\.ajax\(", r"\$\.get\(", r"\$\.post\(")],
}


@dataclass
class WAFSignature:
    """Signature for identifying a specific WAF from response headers."""
    name: str
    headers: Dict[str, str]            # header name -> value substring ("" = any value)
    server_patterns: List[str]         # substrings of any header value
    bypass_techniques: List[str] = field(default_factory=list)

    def profile(self) -> WAFProfile:
        return WAFProfile(self.name, list(self.bypass_techniques))


# =============================================================================
# WAF SIGNATURE DATABASE
# =============================================================================
WAF_SIGNATURES: List[WAFSignature] = [
    WAFSignature(
        name="modsecurity",
        headers={"x-mod-security": ""},
        server_patterns=["mod_security", "modsecurity", "noyb"],
        bypass_techniques=["encoding", "obfuscation", "splitting"],
    ),
    WAFSignature(
        name="cloudflare",
        headers={"cf-ray": "", "server": "cloudflare"},
        server_patterns=["cloudflare-nginx"],
        bypass_techniques=["encoding", "obfuscation", "splitting", "chunked"],
    ),
    WAFSignature(
        name="aws",
        headers={"x-amzn-requestid": "", "x-amz-cf-id": ""},
        server_patterns=["awselb", "aws waf"],
        bypass_techniques=["encoding", "obfuscation", "splitting", "chunked"],
    ),
    WAFSignature(
        name="akamai",
        headers={"akamai-origin-hop": "", "x-akamai-transformed": ""},
        server_patterns=["akamaighost"],
        bypass_techniques=["encoding", "obfuscation", "splitting", "chunked"],
    ),
]

# Generic firewall markers with no product attribution
GENERIC_WAF_HEADERS = ["x-waf", "x-firewall"]


@dataclass
class CacheEntry:
    """Cached fingerprint for one origin."""
    environment: Environment
    timestamp: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > CACHE_TTL_SECONDS


def parse_csp(policy: str) -> Dict[str, List[str]]:
    """Split a Content-Security-Policy on ';' then whitespace."""
    directives: Dict[str, List[str]] = {}
    for part in policy.split(";"):
        tokens = part.split()
        if len(tokens) >= 2:
            directives[tokens[0].lower()] = tokens[1:]
    return directives


class EnvironmentFingerprinter:
    """
    Identifies server, frameworks, WAF and security posture.

    Usage:
        fingerprinter = EnvironmentFingerprinter()
        env = fingerprinter.fingerprint(response.headers, {"jQuery"})
    """

    def __init__(
        self,
        framework_signatures: Optional[Dict[str, List[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.framework_signatures = framework_signatures or settings.FRAMEWORK_SIGNATURES
        self.signatures = WAF_SIGNATURES
        self.cache: Dict[str, CacheEntry] = {}
        self._clock = clock

    def fingerprint(
        self,
        response_headers: Optional[Mapping[str, str]] = None,
        global_flags: Optional[Iterable[str]] = None,
        markup: Optional[str] = None,
    ) -> Environment:
        """
        Build an Environment from headers and page state. Never raises.

        Args:
            response_headers: Headers of the page response (any casing)
            global_flags: Names of globals / DOM attributes present on the page
            markup: Optional page markup for inline framework detection
        """
        headers = {k.lower(): str(v) for k, v in (response_headers or {}).items()}
        flags = set(global_flags or ())
        env = Environment()
        try:
            env.server = self._detect_server(headers)
            env.frameworks = self._detect_frameworks(flags, markup or "")
            env.waf = self._detect_waf(headers)
            env.security_headers = {
                name: headers[name.lower()] for name in SECURITY_HEADERS if name.lower() in headers
            }
            csp = headers.get("content-security-policy") or headers.get("x-content-security-policy")
            env.csp = parse_csp(csp) if csp else None
            env.xss_protection = "1; mode=block" in headers.get("x-xss-protection", "")
            env.csrf_token = next((headers[h.lower()] for h in CSRF_HEADERS if h.lower() in headers), None)
            env.charset = self._detect_charset(headers)
            env.content_encoding = headers.get("content-encoding")
        except Exception as e:
            logger.warning(f"Fingerprinting degraded: {e}")
        if env.waf:
            logger.info(f"WAF Detected: {env.waf.name} (bypass: {', '.join(env.waf.bypass_techniques)})")
        return env

    def fingerprint_cached(
        self,
        url: str,
        response_headers: Optional[Mapping[str, str]] = None,
        global_flags: Optional[Iterable[str]] = None,
        markup: Optional[str] = None,
    ) -> Environment:
        """Fingerprint once per origin; later calls within the TTL reuse the result."""
        key = self._extract_base_url(url)
        now = self._clock()
        entry = self.cache.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                logger.debug(f"Environment cache hit for {key}")
                return entry.environment
            del self.cache[key]
        env = self.fingerprint(response_headers, global_flags, markup)
        self.cache[key] = CacheEntry(environment=env, timestamp=now)
        return env

    def clear_cache(self):
        """Clear the fingerprint cache."""
        self.cache.clear()

    def _detect_server(self, headers: Dict[str, str]) -> str:
        banner = f"{headers.get('server', '')} {headers.get('x-powered-by', '')}".lower()
        for name, patterns in SERVER_SIGNATURES.items():
            if any(p in banner for p in patterns):
                return name
        return "unknown"

    def _detect_frameworks(self, flags: Set[str], markup: str) -> Set[str]:
        found = set()
        for name, markers in self.framework_signatures.items():
            if any(marker in flags for marker in markers):
                found.add(name)
        for name, patterns in FRAMEWORK_MARKUP_PATTERNS.items():
            if markup and any(p.search(markup) for p in patterns):
                found.add(name)
        return found

    def _detect_waf(self, headers: Dict[str, str]) -> Optional[WAFProfile]:
        all_values = " ".join(headers.values()).lower()
        for sig in self.signatures:
            for header_name, pattern in sig.headers.items():
                value = headers.get(header_name)
                if value is not None and (pattern == "" or pattern in value.lower()):
                    return sig.profile()
            if any(p in all_values for p in sig.server_patterns):
                return sig.profile()
        if any(h in headers for h in GENERIC_WAF_HEADERS):
            return WAFProfile("generic", ["encoding", "obfuscation"])
        return None

    def _detect_charset(self, headers: Dict[str, str]) -> str:
        match = re.search(r"charset=([^;]+)", headers.get("content-type", ""), re.I)
        return match.group(1).strip().strip('"').lower() if match else "utf-8"

    def _extract_base_url(self, url: str) -> str:
        """Extract base URL for caching (scheme + netloc)."""
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"


# =============================================================================
# SERVER-AWARE PAYLOAD FILTERING
# =============================================================================

SERVER_PAYLOAD_FILTERS: Dict[str, List[str]] = {
    "apache": ["..", "<!--"],
    "nginx": ["$", "\\"],
    "iis": ["..", "\\"],
}


def filter_payloads_for_server(payloads: Iterable[str], environment: Environment) -> List[str]:
    """Drop payloads containing substrings the detected server is known to mangle."""
    banned = SERVER_PAYLOAD_FILTERS.get(environment.server, [])
    return [p for p in payloads if not any(b in p for b in banned)]
