"""
Unit tests for the offline CLI commands.
"""

from typer.testing import CliRunner

from xssprobe.cli import _load_config, app

runner = CliRunner()


class TestDecodeCommand:

    def test_decodes_layers(self):
        result = runner.invoke(app, ["decode", "%3Cscript%3Ealert(1)%3C%2Fscript%3E"])
        assert result.exit_code == 0
        assert "<script>alert(1)</script>" in result.output
        assert "url" in result.output


class TestVariantsCommand:

    def test_lists_variants(self):
        result = runner.invoke(app, ["variants", "r-img", "--token", "1234567890123456"])
        assert result.exit_code == 0
        assert "encoding:base64" in result.output

    def test_shows_bypass_traits(self):
        result = runner.invoke(app, ["variants", "r-script", "--waf", "cloudflare"])
        assert result.exit_code == 0
        assert "Traits" in result.output
        assert "Script" in result.output
        assert "splitting:array" in result.output

    def test_unknown_waf(self):
        result = runner.invoke(app, ["variants", "--waf", "nosuchwaf"])
        assert result.exit_code == 1

    def test_unknown_payload_id(self):
        result = runner.invoke(app, ["variants", "no-such-payload"])
        assert result.exit_code == 1
        assert "Unknown payload" in result.output


class TestLoadConfig:

    def test_defaults_to_target_host(self):
        config = _load_config(None, "https://shop.example.com/item?id=1")
        assert [t.domain for t in config.scan_targets.targets] == ["shop.example.com"]
        assert config.scan_targets.targets[0].include_subdomains is False
