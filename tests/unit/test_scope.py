"""
Unit tests for scan scope decisions.
"""

import pytest

from xssprobe.core.config import (
    ParameterFilter,
    ScanConfig,
    ScanTargetsConfig,
    TargetRule,
    TrustedDomainsConfig,
)
from xssprobe.core.scope import (
    is_scan_target,
    is_trusted,
    matches_domain,
    normalize_host,
    parameter_allowed,
    path_allowed,
    url_in_scope,
)


@pytest.fixture
def config():
    return ScanConfig(
        trusted=TrustedDomainsConfig(domains=["cdn.example.com"]),
        scan_targets=ScanTargetsConfig(targets=[
            TargetRule(domain="example.com", exclude_paths=["/logout"]),
            TargetRule(domain="shop.test", include_subdomains=False, paths=["/store"], methods=["GET"]),
        ]),
    )


class TestDomainMatching:

    def test_normalize_host(self):
        assert normalize_host("WWW.Example.COM:8443") == "www.example.com"
        assert normalize_host("https://example.com/path") == "example.com"

    def test_exact_and_subdomain(self):
        assert matches_domain("example.com", "example.com", False) is True
        assert matches_domain("a.example.com", "example.com", True) is True
        assert matches_domain("a.example.com", "example.com", False) is False

    def test_suffix_without_dot_boundary_rejected(self):
        assert matches_domain("badexample.com", "example.com", True) is False

    def test_wildcard_prefix(self):
        assert matches_domain("api.example.com", "*.example.com", True) is True


class TestScanTargets:
    """Allow-list and trusted-domain exclusion."""

    def test_target_host(self, config):
        assert is_scan_target("www.example.com", config) is True

    def test_unknown_host(self, config):
        assert is_scan_target("other.org", config) is False

    def test_trusted_host_never_scanned(self, config):
        assert is_trusted("cdn.example.com", config) is True
        assert is_trusted("img.cdn.example.com", config) is True
        assert is_scan_target("cdn.example.com", config) is False

    def test_disabled_trust_list(self, config):
        config.trusted.enabled = False
        assert is_scan_target("cdn.example.com", config) is True

    def test_disabled_targets_scan_nothing(self, config):
        config.scan_targets.enabled = False
        assert is_scan_target("example.com", config) is False

    def test_empty_targets_scan_nothing(self):
        assert is_scan_target("example.com", ScanConfig()) is False


class TestRuleFilters:

    def test_excluded_path(self, config):
        assert url_in_scope("https://example.com/logout?next=/", config) is None
        assert url_in_scope("https://example.com/account", config) is not None

    def test_path_allow_list(self, config):
        assert url_in_scope("https://shop.test/store/item?id=1", config).domain == "shop.test"
        assert url_in_scope("https://shop.test/admin", config) is None

    def test_method_filter(self, config):
        assert url_in_scope("https://shop.test/store", config, method="POST") is None
        assert url_in_scope("https://example.com/", config, method="post") is not None

    def test_path_allowed_defaults_to_root(self):
        assert path_allowed(TargetRule(domain="a.com", paths=["/"]), "") is True

    def test_parameter_filters(self):
        rule = TargetRule(domain="a.com", parameters=ParameterFilter(include=["q", "id"], exclude=["id"]))
        assert parameter_allowed(rule, "q") is True
        assert parameter_allowed(rule, "id") is False
        assert parameter_allowed(rule, "page") is False
        assert parameter_allowed(None, "anything") is True
