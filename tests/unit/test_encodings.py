"""
Unit tests for the encoding codec and the WAF bypass transforms.
"""

import pytest

from xssprobe.core.exceptions import GenerationError
from xssprobe.core.models import TransformFamily
from xssprobe.tools.waf.bypass import (
    chunk_dynamic,
    chunk_fixed,
    chunk_sizes_dynamic,
    chunks_dynamic,
    get_bypass_technique,
    split_array,
    split_object,
    split_string,
    unsplit_array,
    unsplit_object,
    unsplit_string,
    validate_bypass,
)
from xssprobe.tools.waf.encodings import EncodingCodec

PAYLOAD = "<script>alert(1)</script>"


@pytest.fixture
def codec():
    return EncodingCodec()


class TestEncode:
    """Tests for the individual encoders."""

    def test_url_encoding(self, codec):
        assert codec.encode(PAYLOAD, "url") == "%3Cscript%3Ealert(1)%3C%2Fscript%3E"

    def test_html_encoding_escapes_quote_and_slash(self, codec):
        assert codec.encode("'a/b'", "html") == "&#x27;a&#x2F;b&#x27;"
        assert codec.encode(PAYLOAD, "html") == "&lt;script&gt;alert(1)&lt;&#x2F;script&gt;"

    def test_unicode_encoding_escapes_every_unit(self, codec):
        assert codec.encode("<a", "unicode") == "\\u003c\\u0061"

    def test_hex_encoding(self, codec):
        assert codec.encode("<a", "hex") == "\\x3c\\x61"

    def test_base64_encoding(self, codec):
        assert codec.encode(PAYLOAD, "base64") == "PHNjcmlwdD5hbGVydCgxKTwvc2NyaXB0Pg=="

    def test_unknown_method_raises(self, codec):
        with pytest.raises(GenerationError):
            codec.encode(PAYLOAD, "rot13")

    def test_unknown_obfuscation_raises(self, codec):
        with pytest.raises(GenerationError):
            codec.obfuscate(PAYLOAD, "jsfuck")


class TestDecodeAll:
    """decode_all peels every detectable layer until nothing changes."""

    @pytest.mark.parametrize("method", ["url", "html", "unicode", "hex", "base64"])
    def test_recovers_payload(self, codec, method):
        assert codec.decode_all(codec.encode(PAYLOAD, method)) == PAYLOAD

    def test_nested_layers(self, codec):
        layered = codec.encode(codec.encode(PAYLOAD, "html"), "url")
        assert codec.decode_all(layered) == PAYLOAD

    def test_plain_text_unchanged(self, codec):
        assert codec.decode_all("hello world") == "hello world"

    def test_detect_encodings(self, codec):
        assert codec.detect_encodings("%3Cb%3E") == ["url"]
        assert codec.detect_encodings("&lt;b&gt;") == ["html"]
        assert codec.detect_encodings("\\x3c") == ["hex"]
        assert codec.detect_encodings("plain") == []

    def test_validate_encoded_payload(self, codec):
        encoded = codec.encode(PAYLOAD, "url")
        assert codec.validate_encoded_payload(encoded, f"<p>{PAYLOAD}</p>") is True
        assert codec.validate_encoded_payload(encoded, "<p>&lt;script&gt;</p>") is False


class TestObfuscation:
    """Obfuscations decode back to the original payload."""

    @pytest.mark.parametrize("method", ["string", "eval", "concat", "template"])
    def test_deobfuscate_recovers(self, codec, method):
        assert codec.deobfuscate(codec.obfuscate(PAYLOAD, method), method) == PAYLOAD

    def test_string_obfuscation_uses_char_codes(self, codec):
        assert codec.obfuscate("<a", "string") == "String.fromCharCode(60)+String.fromCharCode(97)"

    def test_template_escapes_backticks(self, codec):
        obfuscated = codec.obfuscate("a`${b}", "template")
        assert obfuscated == "`a\\`\\${b}`"
        assert codec.deobfuscate(obfuscated, "template") == "a`${b}"

    def test_eval_decoder_rejects_foreign_text(self, codec):
        with pytest.raises(ValueError):
            codec.deobfuscate("alert(1)", "eval")


class TestSplitting:
    """Splitting transforms and their decoders."""

    def test_split_string(self):
        assert split_string("abcde") == "ab+cd+e"
        assert unsplit_string(split_string(PAYLOAD)) == PAYLOAD

    def test_split_array(self):
        assert split_array("abc") == "[\"ab\",\"c\"].join('')"
        assert unsplit_array(split_array(PAYLOAD)) == PAYLOAD

    def test_split_object(self):
        assert unsplit_object(split_object(PAYLOAD)) == PAYLOAD

    def test_unsplit_array_rejects_foreign_text(self):
        with pytest.raises(ValueError):
            unsplit_array("abc")


class TestChunking:
    """Chunking is an identity transform on the joined payload."""

    def test_dynamic_chunk_sizes(self):
        assert chunk_sizes_dynamic(20) == [2, 5, 3, 6, 4]

    def test_dynamic_chunks_cover_payload(self):
        assert "".join(chunks_dynamic(PAYLOAD)) == PAYLOAD

    def test_chunk_output_equals_input(self):
        assert chunk_fixed(PAYLOAD) == PAYLOAD
        assert chunk_dynamic(PAYLOAD) == PAYLOAD

    def test_unknown_technique_raises(self):
        with pytest.raises(GenerationError):
            get_bypass_technique(TransformFamily.CHUNKING, "random")

    def test_validate_bypass(self):
        result = validate_bypass("<script>eval(x)</script>")
        assert "Script tag detected" in result["evidence"]
        assert "Obfuscated code detected" in result["evidence"]
