"""Turn search result pages into GeoSerpResponse objects.

Google's markup is unversioned, so every extraction here is best effort: a
result that does not look the way we expect is logged and skipped, and
whatever else parsed is still returned.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from geogrid.etl.rank_extractor import extract_domain_from_url
from geogrid.models import GeoSerpResponse, LocalPackResult, OrganicResult

logger = logging.getLogger(__name__)

MAX_ORGANIC_RESULTS = 20
MAX_LOCAL_PACK_RESULTS = 3
SNIPPET_WINDOW = 60

SNIPPET_CLASSES = ("VwiC3b", "aCOpRe")
LOCAL_PACK_CONTAINER_CLASS = "VkpGBb"
LOCAL_PACK_NAME_CLASSES = ("OSrXXb", "dbg0pd")
LOCAL_PACK_RATING_CLASSES = ("yi40Hd", "BTtC6e")
LOCAL_PACK_REVIEWS_CLASSES = ("RDApEe",)

LOCAL_PACK_MARKERS = ("data-local-pack", "local-pack", "/maps/")
FEATURE_MARKERS = (
    ("featured_snippet", ("featured-snippet", 'data-attrid="wa:/description"')),
    ("people_also_ask", ("related-question", "People also ask")),
    ("shopping", ("data-lpage", "shopping-carousel")),
    ("knowledge_panel", ("kp-wholepage", "knowledge-panel")),
    ("video", ("video-carousel", "video-voyager")),
    ("image_pack", ("img-brk", "image-carousel")),
)

# Keys of a structured payload that imply a result-page feature.
STRUCTURED_FEATURE_KEYS = (
    ("local_pack", ("local_results",)),
    ("featured_snippet", ("answer_box", "featured_snippet")),
    ("people_also_ask", ("related_questions",)),
    ("shopping", ("shopping_results", "inline_shopping")),
    ("knowledge_panel", ("knowledge_graph",)),
    ("video", ("inline_videos", "video_results")),
    ("image_pack", ("inline_images",)),
)

_GOOGLE_HOST = re.compile(r"(^|\.)google\.[a-z.]+$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class ParseError(ValueError):
    """A single result did not have the expected shape."""


def parse_geo_serp_html(markup: str) -> GeoSerpResponse:
    """Extract organic listings, the local pack and coarse features from raw SERP markup."""
    markup = markup or ""
    soup = BeautifulSoup(markup, "html.parser")

    organic = _parse_organic(soup)

    serp_features: List[str] = []
    local_pack: List[LocalPackResult] = []
    if any(marker in markup for marker in LOCAL_PACK_MARKERS):
        serp_features.append("local_pack")
        local_pack = _parse_local_pack(soup)

    for feature, markers in FEATURE_MARKERS:
        if any(marker in markup for marker in markers):
            serp_features.append(feature)

    logger.debug(
        "Parsed SERP markup: organic=%d local_pack=%d features=%s",
        len(organic),
        len(local_pack),
        serp_features,
    )
    return GeoSerpResponse(
        organic=organic,
        local_pack=local_pack,
        serp_features=serp_features,
        total_results=len(organic),
    )


def _parse_organic(soup: BeautifulSoup) -> List[OrganicResult]:
    organic: List[OrganicResult] = []
    for anchor in soup.find_all("a", href=True):
        if len(organic) >= MAX_ORGANIC_RESULTS:
            break
        heading = anchor.find("h3")
        if heading is None:
            continue
        try:
            url = _resolve_href(anchor["href"])
            if url is None or _is_excluded_url(url):
                continue
            title = _clean_text(heading.get_text(" "))
            if not title:
                raise ParseError(f"empty title for {url}")
            organic.append(
                OrganicResult(
                    position=len(organic) + 1,
                    title=title,
                    url=url,
                    domain=extract_domain_from_url(url),
                    snippet=_find_snippet(anchor, heading),
                )
            )
        except (ParseError, ValueError, AttributeError) as exc:
            logger.warning("Skipping organic result: %s", exc)
    return organic


def _resolve_href(href: str) -> Optional[str]:
    """Return an absolute result URL, unwrapping Google's ``/url?q=`` redirects."""
    href = href.strip()
    if href.startswith("/url?"):
        target = parse_qs(urlparse(href).query).get("q")
        href = target[0] if target else ""
    if not href.startswith(("http://", "https://")):
        return None
    return href


def _is_excluded_url(url: str) -> bool:
    if "webcache" in url or "/aclk" in url:
        return True
    host = urlparse(url).hostname or ""
    return bool(_GOOGLE_HOST.search(host))


def _find_snippet(anchor: Tag, heading: Tag) -> str:
    for element in anchor.find_all_next(True, limit=SNIPPET_WINDOW):
        if element.name == "h3" and element is not heading:
            break
        if _has_class(element, SNIPPET_CLASSES):
            return _clean_text(element.get_text(" "))
    return ""


def _parse_local_pack(soup: BeautifulSoup) -> List[LocalPackResult]:
    entries: List[LocalPackResult] = []
    for container in soup.find_all(class_=LOCAL_PACK_CONTAINER_CLASS):
        if len(entries) >= MAX_LOCAL_PACK_RESULTS:
            break
        try:
            name = _first_with_class(container, LOCAL_PACK_NAME_CLASSES)
            if name is None:
                raise ParseError("local pack entry without a business name")
            title = _clean_text(name.get_text(" "))
            if not title:
                raise ParseError("local pack entry with an empty business name")

            rating_tag = _first_with_class(container, LOCAL_PACK_RATING_CLASSES)
            reviews_tag = _first_with_class(container, LOCAL_PACK_REVIEWS_CLASSES)
            entries.append(
                LocalPackResult(
                    position=len(entries) + 1,
                    title=title,
                    rating=_safe_float(_clean_text(rating_tag.get_text()) if rating_tag else None),
                    review_count=_safe_int(_clean_text(reviews_tag.get_text()) if reviews_tag else None),
                    website=_find_website_link(container),
                )
            )
        except (ParseError, ValueError, AttributeError) as exc:
            logger.warning("Skipping local pack entry: %s", exc)
    return entries


def _find_website_link(container: Tag) -> Optional[str]:
    for link in container.find_all("a", href=True):
        if _clean_text(link.get_text(" ")).lower() == "website":
            return _resolve_href(link["href"])
    return None


def _first_with_class(container: Tag, classes: Iterable[str]) -> Optional[Tag]:
    for class_name in classes:
        found = container.find(class_=class_name)
        if found is not None:
            return found
    return None


def _has_class(element: Tag, classes: Iterable[str]) -> bool:
    element_classes = element.get("class") or []
    return any(class_name in element_classes for class_name in classes)


def _clean_text(value: Any) -> str:
    # BeautifulSoup has already decoded entities; &nbsp; survives as U+00A0.
    if not value:
        return ""
    return _WHITESPACE.sub(" ", str(value).replace("\xa0", " ")).strip()


def parse_structured_serp(data: Optional[Dict[str, Any]]) -> GeoSerpResponse:
    """Normalize a structured (SerpAPI-style) JSON payload."""
    if not data:
        return GeoSerpResponse()

    organic: List[OrganicResult] = []
    for raw in data.get("organic_results") or []:
        if len(organic) >= MAX_ORGANIC_RESULTS:
            break
        if not isinstance(raw, dict):
            continue
        url = _strip_or_none(raw.get("link") or raw.get("url"))
        if not url:
            logger.debug("Skipping organic result without a link: %s", str(raw)[:200])
            continue
        organic.append(
            OrganicResult(
                position=len(organic) + 1,
                title=_clean_text(raw.get("title")),
                url=url,
                domain=extract_domain_from_url(url),
                snippet=_clean_text(raw.get("snippet")),
            )
        )

    local_pack: List[LocalPackResult] = []
    for raw in _extract_local_items(data):
        if len(local_pack) >= MAX_LOCAL_PACK_RESULTS:
            break
        if not isinstance(raw, dict):
            continue
        title = _clean_text(raw.get("title") or raw.get("name"))
        if not title:
            continue
        links = raw.get("links") if isinstance(raw.get("links"), dict) else {}
        local_pack.append(
            LocalPackResult(
                position=len(local_pack) + 1,
                title=title,
                address=_strip_or_none(raw.get("address")),
                rating=_safe_float(raw.get("rating")),
                review_count=_safe_int(raw.get("reviews") or raw.get("review_count")),
                phone=_strip_or_none(raw.get("phone")),
                website=_strip_or_none(raw.get("website") or links.get("website")),
                place_id=_strip_or_none(raw.get("place_id")),
            )
        )

    serp_features = list(data.get("serp_features") or [])
    for feature, keys in STRUCTURED_FEATURE_KEYS:
        if feature not in serp_features and any(data.get(key) for key in keys):
            serp_features.append(feature)

    search_information = data.get("search_information") or {}
    search_metadata = data.get("search_metadata") or {}
    return GeoSerpResponse(
        organic=organic,
        local_pack=local_pack,
        serp_features=serp_features,
        total_results=_safe_int(data.get("total_results") or search_information.get("total_results")),
        search_time=_safe_float(search_metadata.get("total_time_taken")),
    )


def _extract_local_items(data: Dict[str, Any]) -> Iterable[Any]:
    """local_results arrives either as a list or as a dict wrapping the places."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        for key in ("places", "results", "local_results"):
            maybe = local_results.get(key)
            if isinstance(maybe, list):
                return maybe
    return []


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            try:
                return int(digits)
            except ValueError:
                return None
    return None
