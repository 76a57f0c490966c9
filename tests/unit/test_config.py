"""
Unit tests for settings and the scan configuration document.
"""

import json

import pytest
from pydantic import ValidationError

from xssprobe.core.config import ScanConfig, Settings, TargetRule
from xssprobe.core.exceptions import InvalidConfigError

VALID_DOCUMENT = {
    "trusted": {"domains": ["CDN.Example.com "]},
    "scan_targets": {"targets": [{"domain": "example.com", "methods": ["get"], "paths": ["/app"]}]},
    "request_limit": {"request_delay": 0.5, "max_requests_per_minute": 30, "max_concurrent_requests": 2},
    "request_queue": {"batch_size": 3, "retry_attempts": 1},
}


class TestScanConfigLoad:

    def test_load_valid_document(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text(json.dumps(VALID_DOCUMENT))
        config = ScanConfig.load(path)
        assert config.trusted.domains == ["cdn.example.com"]
        assert config.scan_targets.targets[0].methods == ["GET"]
        assert config.request_limit.max_concurrent_requests == 2
        assert config.cache.ttl == 300.0

    def test_schema_error_lists_problems(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text(json.dumps({"request_limit": {"max_requests_per_minute": 0}}))
        with pytest.raises(InvalidConfigError) as exc_info:
            ScanConfig.load(path)
        assert exc_info.value.errors

    def test_semantic_error_lists_problems(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text(json.dumps({"scan_targets": {"targets": []}}))
        with pytest.raises(InvalidConfigError) as exc_info:
            ScanConfig.load(path)
        assert exc_info.value.errors == ["scan_targets is enabled but lists no targets"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidConfigError):
            ScanConfig.load(tmp_path / "absent.json")

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "scan.json"
        path.write_text("{not json")
        with pytest.raises(InvalidConfigError):
            ScanConfig.load(path)


class TestValidateConfig:

    def test_bad_values_reported(self):
        config = ScanConfig()
        config.trusted.domains = ["not a domain"]
        config.scan_targets.targets = [
            TargetRule(domain="example.com", paths=["app"], methods=["FETCH"]),
        ]
        errors = config.validate_config()
        assert "invalid trusted domain: not a domain" in errors
        assert "targets[0]: path must start with '/': app" in errors
        assert "targets[0]: unknown method FETCH" in errors

    def test_disabled_targets_need_no_entries(self):
        config = ScanConfig()
        config.scan_targets.enabled = False
        assert config.validate_config() == []

    def test_snapshot_is_independent(self):
        config = ScanConfig(scan_targets={"targets": [{"domain": "example.com"}]})
        snapshot = config.snapshot()
        config.scan_targets.targets[0].domain = "changed.com"
        assert snapshot.scan_targets.targets[0].domain == "example.com"


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.VULNERABLE_THRESHOLD == 0.8
        assert settings.EVIDENCE_WEIGHTS["data-uri"] == 0.5

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("XSSPROBE_PROBE_TIMEOUT", "2.5")
        assert Settings().PROBE_TIMEOUT == 2.5

    def test_threshold_bounds(self):
        with pytest.raises(ValidationError):
            Settings(VULNERABLE_THRESHOLD=1.5)

    def test_weights_need_every_kind(self):
        with pytest.raises(ValidationError):
            Settings(EVIDENCE_WEIGHTS={"reflected": 0.8})

    def test_mask_secrets(self):
        settings = Settings(WEBHOOK_URL="https://open.feishu.cn/open-apis/bot/v2/hook/secret")
        assert "secret" not in settings.mask_secrets()["WEBHOOK_URL"]
