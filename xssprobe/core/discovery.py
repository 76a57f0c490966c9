"""
Injection Point Discovery

Finds the attack surface of a single page:
1. URL query parameters
2. Hidden inputs (probed as query parameters of the page path)
3. Form fields (probed through the form's action and method)
4. Pseudo-static path segments
5. Query parameters of in-scope links
6. DOM reflections of query values (attributes and text nodes)

Each point comes with the DetectionContext needed to probe it.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qsl, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from xssprobe.core.config import ScanConfig, ScanToggles, TargetRule
from xssprobe.core.models import DetectionContext, InjectionKind, InjectionPoint
from xssprobe.core.orchestrator import PATH_SEGMENT_PREFIX
from xssprobe.core.scope import parameter_allowed, url_in_scope
from xssprobe.tools.context_analyzer import element_from_tag
from xssprobe.utils.logger import get_logger

logger = get_logger("core.discovery")

EXCLUDED_INPUT_TYPES = ["submit", "button", "reset", "image"]

# Reflected values shorter than this match too much markup to be useful
MIN_REFLECTION_LENGTH = 3

SKIPPED_LINK_PREFIXES = ("javascript:", "mailto:", "#", "tel:", "data:")


@dataclass
class DiscoveredPoint:
    point: InjectionPoint
    context: DetectionContext

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.point.kind.value, self.context.url or "", self.context.method, self.point.location_path)


def extract_injection_points(
    url: str,
    html: str,
    toggles: Optional[ScanToggles] = None,
    rule: Optional[TargetRule] = None,
    config: Optional[ScanConfig] = None,
) -> List[DiscoveredPoint]:
    """
    Collect every injection point on a page, honouring the scan toggles.

    Args:
        url: Page URL
        html: Page markup
        toggles: Which surfaces to collect (all by default)
        rule: Target rule whose parameter filters apply
        config: Scan configuration used to keep link points in scope
    """
    toggles = toggles or ScanToggles()
    soup = BeautifulSoup(html or "", "html.parser")
    points: List[DiscoveredPoint] = []

    if toggles.parameters:
        points.extend(_query_points(url, html, rule))
    if toggles.hidden_inputs:
        points.extend(_hidden_input_points(url, soup, rule))
    if toggles.forms:
        points.extend(_form_points(url, soup, rule))
    if toggles.pseudo_static:
        points.extend(_path_points(url, html))
    if toggles.links:
        points.extend(_link_points(url, soup, rule, config))
    if toggles.dom:
        points.extend(_dom_points(url, soup))

    unique: List[DiscoveredPoint] = []
    seen: Set[Tuple[str, str, str, str]] = set()
    for discovered in points:
        if discovered.key not in seen:
            seen.add(discovered.key)
            unique.append(discovered)

    logger.info(f"Discovered {len(unique)} injection points on {url}")
    return unique


def page_path(url: str) -> str:
    """URL without query string or fragment."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _query_points(url: str, html: str, rule: Optional[TargetRule]) -> List[DiscoveredPoint]:
    params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
    points = []
    for name, value in params.items():
        if not parameter_allowed(rule, name):
            continue
        points.append(DiscoveredPoint(
            point=InjectionPoint(value=value, kind=InjectionKind.URL_PARAM, location_path=name),
            context=DetectionContext(url=url, method="GET", parameter=name, params=dict(params), markup=html),
        ))
    return points


def _hidden_input_points(url: str, soup: BeautifulSoup, rule: Optional[TargetRule]) -> List[DiscoveredPoint]:
    points = []
    target = page_path(url)
    for tag in soup.find_all("input", attrs={"type": "hidden"}):
        name = tag.get("name") or tag.get("id")
        if not name or not parameter_allowed(rule, name):
            continue
        value = tag.get("value", "")
        points.append(DiscoveredPoint(
            point=InjectionPoint(value=value, kind=InjectionKind.HIDDEN_FIELD, location_path=name),
            context=DetectionContext(
                url=target, method="GET", parameter=name, params={name: value},
                markup=str(tag), element=element_from_tag(tag),
            ),
        ))
    return points


def _form_points(url: str, soup: BeautifulSoup, rule: Optional[TargetRule]) -> List[DiscoveredPoint]:
    points = []
    for form in soup.find_all("form"):
        fields: Dict[str, str] = {}
        tags = {}
        for tag in form.find_all(["input", "textarea", "select"]):
            name = tag.get("name")
            if not name:
                continue
            if tag.get("type", "text").lower() in EXCLUDED_INPUT_TYPES:
                continue
            fields[name] = tag.get("value", "")
            tags[name] = tag
        if not fields:
            continue

        action = urljoin(url, form.get("action") or url)
        method = (form.get("method") or "get").upper()
        for name, value in fields.items():
            if not parameter_allowed(rule, name):
                continue
            points.append(DiscoveredPoint(
                point=InjectionPoint(value=value, kind=InjectionKind.FORM_FIELD, location_path=name),
                context=DetectionContext(
                    url=action, method=method, parameter=name, params=dict(fields),
                    markup=str(form), element=element_from_tag(tags[name]),
                ),
            ))
    return points


def _path_points(url: str, html: str) -> List[DiscoveredPoint]:
    parts = urlsplit(url)
    segments = parts.path.split("/")
    points = []
    for index, segment in enumerate(segments):
        if not segment:
            continue
        points.append(DiscoveredPoint(
            point=InjectionPoint(
                value=segment, kind=InjectionKind.URL_PARAM, location_path=f"{PATH_SEGMENT_PREFIX}{index}"
            ),
            context=DetectionContext(url=page_path(url), method="GET", markup=html),
        ))
    return points


def _link_points(
    url: str,
    soup: BeautifulSoup,
    rule: Optional[TargetRule],
    config: Optional[ScanConfig],
) -> List[DiscoveredPoint]:
    points = []
    page_host = urlsplit(url).hostname
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.startswith(SKIPPED_LINK_PREFIXES):
            continue
        link = urljoin(url, href)
        parts = urlsplit(link)
        if parts.scheme not in ("http", "https") or not parts.query:
            continue

        link_rule = rule
        if config is not None:
            link_rule = url_in_scope(link, config)
            if link_rule is None:
                logger.debug(f"Skipping out-of-scope link {link}")
                continue
        elif parts.hostname != page_host:
            continue

        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        for name, value in params.items():
            if not value or not parameter_allowed(link_rule, name):
                continue
            points.append(DiscoveredPoint(
                point=InjectionPoint(value=value, kind=InjectionKind.URL_PARAM, location_path=name),
                context=DetectionContext(url=link, method="GET", parameter=name, params=dict(params)),
            ))
    return points


def _dom_points(url: str, soup: BeautifulSoup) -> List[DiscoveredPoint]:
    values = {
        v for _, v in parse_qsl(urlsplit(url).query, keep_blank_values=True)
        if len(v) >= MIN_REFLECTION_LENGTH
    }
    if not values:
        return []

    points = []
    for tag in soup.find_all(True):
        element = None
        for attr, raw in tag.attrs.items():
            attr_value = " ".join(raw) if isinstance(raw, list) else str(raw)
            if any(v in attr_value for v in values):
                element = element or element_from_tag(tag)
                points.append(DiscoveredPoint(
                    point=InjectionPoint(
                        value=attr_value, kind=InjectionKind.DOM_ATTRIBUTE,
                        location_path=f"{_dom_path(element)}@{attr}",
                    ),
                    context=DetectionContext(url=url, markup=str(tag), element=element),
                ))
        text = tag.string
        if text and any(v in text for v in values):
            element = element or element_from_tag(tag)
            points.append(DiscoveredPoint(
                point=InjectionPoint(value=str(text), kind=InjectionKind.DOM_TEXT, location_path=_dom_path(element)),
                context=DetectionContext(url=url, markup=str(tag), element=element),
            ))
    return points


def _dom_path(element) -> str:
    return " > ".join(element.ancestors + [element.tag])


__all__ = [
    "DiscoveredPoint",
    "extract_injection_points",
    "page_path",
]
