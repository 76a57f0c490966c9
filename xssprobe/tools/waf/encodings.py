"""
Payload Encodings and Obfuscations.

Every technique is a pure encoder paired with the decoder that undoes it, so a
variant can always be checked for its uniqueness token by running the same
technique backwards. ``decode_all`` is the blind counterpart: it guesses the
encodings present in arbitrary text and peels them off until nothing more
matches.
"""

import base64
import binascii
import html
import json
import re
import urllib.parse
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from xssprobe.core.exceptions import GenerationError
from xssprobe.core.models import TransformFamily
from xssprobe.utils.logger import get_logger

logger = get_logger("waf.encodings")


@dataclass
class EncodingTechnique:
    """Represents a single reversible transform."""
    name: str
    family: TransformFamily
    description: str
    encoder: Callable[[str], str]
    decoder: Callable[[str], str]


# Signatures used by decode_all, in application order
_URL_RE = re.compile(r"%[0-9A-Fa-f]{2}")
_NAMED_ENTITY_RE = re.compile(r"&[a-zA-Z]+;")
_JS_UNICODE_RE = re.compile(r"\\u([0-9A-Fa-f]{4})")
_NUMERIC_ENTITY_RE = re.compile(r"&#([xX][0-9A-Fa-f]+|[0-9]+);")
_HEX_ESCAPE_RE = re.compile(r"\\x([0-9A-Fa-f]{2})")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")
_HEX_OR_UNICODE_RE = re.compile(r"\\x([0-9A-Fa-f]{2})|(?:\\u[0-9A-Fa-f]{4})+")

_CHAR_CODE_RE = re.compile(r"String\.fromCharCode\((\d+)\)")
_JSON_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"')

_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}
_JS_UNESCAPE_RE = re.compile(r"\\([\\'\"nrt])")
_JS_UNESCAPES = {"\\": "\\", "'": "'", '"': '"', "n": "\n", "r": "\r", "t": "\t"}


def _utf16_units(payload: str) -> List[int]:
    data = payload.encode("utf-16-be", "surrogatepass")
    return [int.from_bytes(data[i:i + 2], "big") for i in range(0, len(data), 2)]


def _from_utf16_units(units: List[int]) -> str:
    data = b"".join(u.to_bytes(2, "big") for u in units)
    return data.decode("utf-16-be", "surrogatepass")


class EncodingCodec:
    """
    Encoding and obfuscation tables with their decoders.

    Usage:
        codec = EncodingCodec()
        encoded = codec.encode("<script>alert(1)</script>", "url")
        codec.decode_all(encoded)  # -> "<script>alert(1)</script>"
    """

    ENCODING_METHODS = ("url", "html", "js", "unicode", "hex", "base64")
    OBFUSCATION_METHODS = ("string", "eval", "concat", "template")

    def __init__(self):
        self.techniques: Dict[Tuple[TransformFamily, str], EncodingTechnique] = {
            (t.family, t.name): t for t in self._build_techniques()
        }

    def _build_techniques(self) -> List[EncodingTechnique]:
        enc = TransformFamily.ENCODING
        obf = TransformFamily.OBFUSCATION
        return [
            EncodingTechnique("url", enc, "Percent-encoding (encodeURIComponent set)", self._url_encode, self._url_decode),
            EncodingTechnique("html", enc, "HTML entity encoding", self._html_encode, self._html_decode),
            EncodingTechnique("js", enc, "JavaScript string escaping", self._js_encode, self._js_decode),
            EncodingTechnique("unicode", enc, "\\uXXXX escape for every code unit", self._unicode_encode, self._unicode_decode),
            EncodingTechnique("hex", enc, "\\xXX escape for every character", self._hex_encode, self._hex_decode),
            EncodingTechnique("base64", enc, "Base64 of the UTF-8 bytes", self._base64_encode, self._base64_decode),
            EncodingTechnique("string", obf, "String.fromCharCode concatenation", self._obfuscate_string, self._deobfuscate_string),
            EncodingTechnique("eval", obf, "eval() over char-code concatenation", self._obfuscate_eval, self._deobfuscate_eval),
            EncodingTechnique("concat", obf, "Quoted single-character concatenation", self._obfuscate_concat, self._deobfuscate_concat),
            EncodingTechnique("template", obf, "Template literal", self._obfuscate_template, self._deobfuscate_template),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_technique(self, family: TransformFamily, name: str) -> EncodingTechnique:
        technique = self.techniques.get((family, name))
        if technique is None:
            raise GenerationError(f"Unknown {family.value} method: {name}", method=name)
        return technique

    def encode(self, payload: str, method: str) -> str:
        return self.get_technique(TransformFamily.ENCODING, method).encoder(payload)

    def decode(self, text: str, method: str) -> str:
        return self.get_technique(TransformFamily.ENCODING, method).decoder(text)

    def obfuscate(self, payload: str, method: str) -> str:
        return self.get_technique(TransformFamily.OBFUSCATION, method).encoder(payload)

    def deobfuscate(self, text: str, method: str) -> str:
        return self.get_technique(TransformFamily.OBFUSCATION, method).decoder(text)

    def detect_encodings(self, text: str) -> List[str]:
        """Names of the encoding signatures present in ``text``, in decode order."""
        detected = []
        if _URL_RE.search(text):
            detected.append("url")
        if _NAMED_ENTITY_RE.search(text):
            detected.append("html")
        if _JS_UNICODE_RE.search(text):
            detected.append("unicode")
        if _NUMERIC_ENTITY_RE.search(text):
            detected.append("numeric_entity")
        if _HEX_ESCAPE_RE.search(text):
            detected.append("hex")
        if self._looks_like_base64(text):
            detected.append("base64")
        return detected

    def decode_all(self, text: str, max_rounds: int = 10) -> str:
        """
        Repeatedly decode every detected encoding until a fixpoint.

        Stops when no signature matches, nothing changes, or a decoder fails;
        on failure the text as it stood before the failing step is returned.
        """
        decoders = {
            "url": self._url_decode,
            "html": self._named_entity_decode,
            "unicode": self._unicode_decode,
            "numeric_entity": self._numeric_entity_decode,
            "hex": self._hex_decode,
            "base64": self._base64_decode,
        }
        current = text
        for _ in range(max_rounds):
            detected = self.detect_encodings(current)
            if not detected:
                break
            before = current
            for name in detected:
                try:
                    current = decoders[name](current)
                except (ValueError, OverflowError, UnicodeError, binascii.Error) as e:
                    logger.debug(f"decode_all: {name} decoder failed, stopping: {e}")
                    return current
            if current == before:
                break
        return current

    def validate_encoded_payload(self, encoded: str, response: str) -> bool:
        """True when the fully decoded payload appears verbatim in ``response``."""
        return self.decode_all(encoded) in response

    # ------------------------------------------------------------------
    # Encoders / decoders
    # ------------------------------------------------------------------

    def _url_encode(self, payload: str) -> str:
        return urllib.parse.quote(payload, safe="-_.!~*'()")

    def _url_decode(self, text: str) -> str:
        return urllib.parse.unquote(text, errors="strict")

    def _html_encode(self, payload: str) -> str:
        return (
            payload.replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&#x27;")
            .replace("/", "&#x2F;")
        )

    def _html_decode(self, text: str) -> str:
        # numeric first so "&amp;#x27;" stays a literal after one pass
        return self._named_entity_decode(self._numeric_entity_decode(text))

    def _named_entity_decode(self, text: str) -> str:
        return _NAMED_ENTITY_RE.sub(lambda m: html.unescape(m.group(0)), text)

    def _numeric_entity_decode(self, text: str) -> str:
        def repl(match):
            ref = match.group(1)
            code = int(ref[1:], 16) if ref[0] in "xX" else int(ref)
            return chr(code)
        return _NUMERIC_ENTITY_RE.sub(repl, text)

    def _js_encode(self, payload: str) -> str:
        return "".join(_JS_ESCAPES.get(ch, ch) for ch in payload)

    def _js_decode(self, text: str) -> str:
        return _JS_UNESCAPE_RE.sub(lambda m: _JS_UNESCAPES[m.group(1)], text)

    def _unicode_encode(self, payload: str) -> str:
        return "".join(f"\\u{unit:04x}" for unit in _utf16_units(payload))

    def _unicode_decode(self, text: str) -> str:
        # Collect runs so surrogate pairs recombine
        def repl(match):
            units = [int(u, 16) for u in re.findall(r"\\u([0-9A-Fa-f]{4})", match.group(0))]
            return _from_utf16_units(units)
        return re.sub(r"(?:\\u[0-9A-Fa-f]{4})+", repl, text)

    def _hex_encode(self, payload: str) -> str:
        out = []
        for ch in payload:
            code = ord(ch)
            if code <= 0xFF:
                out.append(f"\\x{code:02x}")
            else:
                out.append(self._unicode_encode(ch))
        return "".join(out)

    def _hex_decode(self, text: str) -> str:
        # single pass so decoded backslashes are not re-read as escapes
        def repl(match):
            if match.group(1) is not None:
                return chr(int(match.group(1), 16))
            return self._unicode_decode(match.group(0))
        return _HEX_OR_UNICODE_RE.sub(repl, text)

    def _base64_encode(self, payload: str) -> str:
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")

    def _base64_decode(self, text: str) -> str:
        return base64.b64decode(text, validate=True).decode("utf-8")

    def _looks_like_base64(self, text: str) -> bool:
        if len(text) < 8 or len(text) % 4 or not _BASE64_RE.match(text):
            return False
        try:
            decoded = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return False
        return decoded.isprintable()

    def _obfuscate_string(self, payload: str) -> str:
        return "+".join(f"String.fromCharCode({unit})" for unit in _utf16_units(payload))

    def _deobfuscate_string(self, text: str) -> str:
        return _from_utf16_units([int(code) for code in _CHAR_CODE_RE.findall(text)])

    def _obfuscate_eval(self, payload: str) -> str:
        return f"eval({self._obfuscate_string(payload)})"

    def _deobfuscate_eval(self, text: str) -> str:
        if not (text.startswith("eval(") and text.endswith(")")):
            raise ValueError("not an eval-wrapped payload")
        return self._deobfuscate_string(text[5:-1])

    def _obfuscate_concat(self, payload: str) -> str:
        return "+".join(json.dumps(ch) for ch in payload)

    def _deobfuscate_concat(self, text: str) -> str:
        return "".join(json.loads(chunk) for chunk in _JSON_STRING_RE.findall(text))

    def _obfuscate_template(self, payload: str) -> str:
        escaped = payload.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
        return f"`{escaped}`"

    def _deobfuscate_template(self, text: str) -> str:
        if len(text) < 2 or text[0] != "`" or text[-1] != "`":
            raise ValueError("not a template literal")
        inner = text[1:-1]
        return inner.replace("\\${", "${").replace("\\`", "`").replace("\\\\", "\\")
