"""
WAF bypass transforms: payload splitting and chunking.

Splitting rewrites the payload as a JavaScript expression that reassembles
two-character chunks at runtime. Chunking only re-slices the payload (fixed
or cycling chunk sizes) and joins it back together, so its output equals
its input; the chunk layout is what a chunked transfer would send.
"""

import json
import re
from typing import Dict, List

from xssprobe.core.exceptions import GenerationError
from xssprobe.core.models import TransformFamily
from xssprobe.tools.waf.encodings import EncodingTechnique

SPLIT_CHUNK_SIZE = 2
FIXED_CHUNK_SIZE = 4

_ARRAY_RE = re.compile(r"^(\[.*\])\.join\(''\)$", re.S)
_OBJECT_RE = re.compile(r"^Object\.values\((\{.*\})\)\.join\(''\)$", re.S)


def _slices(payload: str, size: int) -> List[str]:
    return [payload[i:i + size] for i in range(0, len(payload), size)]


def split_string(payload: str) -> str:
    return "+".join(_slices(payload, SPLIT_CHUNK_SIZE))


def unsplit_string(text: str) -> str:
    # every third character is a joining '+'
    step = SPLIT_CHUNK_SIZE + 1
    return "".join(text[i:i + SPLIT_CHUNK_SIZE] for i in range(0, len(text), step))


def split_array(payload: str) -> str:
    chunks = ",".join(json.dumps(c) for c in _slices(payload, SPLIT_CHUNK_SIZE))
    return f"[{chunks}].join('')"


def unsplit_array(text: str) -> str:
    match = _ARRAY_RE.match(text)
    if not match:
        raise ValueError("not an array-split payload")
    return "".join(json.loads(match.group(1)))


def split_object(payload: str) -> str:
    pairs = ",".join(
        f"{json.dumps(str(i))}:{json.dumps(payload[i:i + SPLIT_CHUNK_SIZE])}"
        for i in range(0, len(payload), SPLIT_CHUNK_SIZE)
    )
    return f"Object.values({{{pairs}}}).join('')"


def unsplit_object(text: str) -> str:
    match = _OBJECT_RE.match(text)
    if not match:
        raise ValueError("not an object-split payload")
    chunks: Dict[str, str] = json.loads(match.group(1))
    return "".join(chunks[k] for k in sorted(chunks, key=int))


def chunk_sizes_dynamic(length: int) -> List[int]:
    """Chunk sizes for dynamic chunking: start at 2, then (size + 1) % 5 + 2."""
    sizes, size, consumed = [], 2, 0
    while consumed < length:
        sizes.append(size)
        consumed += size
        size = (size + 1) % 5 + 2
    return sizes


def chunks_fixed(payload: str) -> List[str]:
    return _slices(payload, FIXED_CHUNK_SIZE)


def chunks_dynamic(payload: str) -> List[str]:
    chunks, offset = [], 0
    for size in chunk_sizes_dynamic(len(payload)):
        chunks.append(payload[offset:offset + size])
        offset += size
    return chunks


def chunk_fixed(payload: str) -> str:
    return "".join(chunks_fixed(payload))


def chunk_dynamic(payload: str) -> str:
    return "".join(chunks_dynamic(payload))


def _identity(text: str) -> str:
    return text


SPLITTING_TECHNIQUES = {
    "string": EncodingTechnique("string", TransformFamily.SPLITTING, "'+'-joined 2-char chunks", split_string, unsplit_string),
    "array": EncodingTechnique("array", TransformFamily.SPLITTING, "Array literal joined at runtime", split_array, unsplit_array),
    "object": EncodingTechnique("object", TransformFamily.SPLITTING, "Object.values() joined at runtime", split_object, unsplit_object),
}

CHUNKING_TECHNIQUES = {
    "fixed": EncodingTechnique("fixed", TransformFamily.CHUNKING, "Fixed 4-char chunks", chunk_fixed, _identity),
    "dynamic": EncodingTechnique("dynamic", TransformFamily.CHUNKING, "Chunks cycling through sizes 2..6", chunk_dynamic, _identity),
}


def get_bypass_technique(family: TransformFamily, name: str) -> EncodingTechnique:
    table = SPLITTING_TECHNIQUES if family == TransformFamily.SPLITTING else CHUNKING_TECHNIQUES
    if family not in (TransformFamily.SPLITTING, TransformFamily.CHUNKING) or name not in table:
        raise GenerationError(f"Unknown {family.value} method: {name}", method=name)
    return table[name]


def validate_bypass(payload: str) -> Dict[str, List[str]]:
    """Describe which bypass traits a materialised payload exhibits."""
    evidence = []
    if "<script>" in payload:
        evidence.append("Script tag detected")
    if re.search(r"on\w+\s*=", payload, re.I):
        evidence.append("Event handler detected")
    if "\\u" in payload or "\\x" in payload:
        evidence.append("Encoded characters detected")
    if "eval(" in payload or "Function(" in payload:
        evidence.append("Obfuscated code detected")
    if "+" in payload or "join(" in payload:
        evidence.append("Split payload detected")
    return {"evidence": evidence}
