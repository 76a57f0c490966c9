"""
Scan scope - decides which hosts, paths, methods and parameters may be probed.

A host is in scope when it matches an enabled scan target and is not on the
trusted-domain list. Targets carry their own path, method and parameter
include/exclude filters.
"""

from typing import Optional
from urllib.parse import urlsplit

from xssprobe.core.config import ScanConfig, TargetRule
from xssprobe.utils.logger import get_logger

logger = get_logger("core.scope")


def normalize_host(host: str) -> str:
    """Lower-case hostname without port or trailing dot."""
    host = (host or "").strip().lower()
    if "://" in host:
        host = urlsplit(host).hostname or ""
    return host.split(":")[0].rstrip(".")


def matches_domain(host: str, domain: str, include_subdomains: bool) -> bool:
    host = normalize_host(host)
    domain = domain.lower().lstrip("*").lstrip(".")
    if not domain:
        return False
    if host == domain:
        return True
    return include_subdomains and host.endswith("." + domain)


def is_trusted(host: str, config: ScanConfig) -> bool:
    trusted = config.trusted
    if not trusted.enabled:
        return False
    return any(matches_domain(host, d, trusted.include_subdomains) for d in trusted.domains)


def matching_target(host: str, config: ScanConfig) -> Optional[TargetRule]:
    """First scan target covering ``host``; None when out of scope."""
    if not config.scan_targets.enabled or not config.scan_targets.targets:
        return None
    if is_trusted(host, config):
        logger.debug(f"{host} is trusted, not scanning")
        return None
    for target in config.scan_targets.targets:
        if target.domain and matches_domain(host, target.domain, target.include_subdomains):
            return target
    return None


def is_scan_target(host: str, config: ScanConfig) -> bool:
    return matching_target(host, config) is not None


def path_allowed(rule: TargetRule, path: str) -> bool:
    path = path or "/"
    if any(path.startswith(p) for p in rule.exclude_paths):
        return False
    return not rule.paths or any(path.startswith(p) for p in rule.paths)


def method_allowed(rule: TargetRule, method: str) -> bool:
    return not rule.methods or method.upper() in rule.methods


def parameter_allowed(rule: Optional[TargetRule], name: str) -> bool:
    if rule is None:
        return True
    if name in rule.parameters.exclude:
        return False
    return not rule.parameters.include or name in rule.parameters.include


def url_in_scope(url: str, config: ScanConfig, method: str = "GET") -> Optional[TargetRule]:
    """Target rule admitting ``url`` for ``method``, or None."""
    parts = urlsplit(url)
    rule = matching_target(parts.hostname or "", config)
    if rule is None:
        return None
    if not path_allowed(rule, parts.path) or not method_allowed(rule, method):
        return None
    return rule
