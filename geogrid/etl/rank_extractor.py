"""Locate a target domain on a result page and summarise ranks across a grid."""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from geogrid.models import (
    CompetitorResult,
    GeoSerpResponse,
    GridAggregateStats,
    RankExtractionResult,
)

logger = logging.getLogger(__name__)

MAX_COMPETITORS = 3

RANK_TIER_COLORS = {
    "excellent": "#22c55e",
    "good": "#84cc16",
    "moderate": "#eab308",
    "poor": "#f97316",
    "bad": "#ef4444",
    "not_found": "#6b7280",
}

_PROTOCOL = re.compile(r"^[a-z][a-z0-9+.-]*://")
_PORT = re.compile(r":\d+$")
_HOST_FALLBACK = re.compile(r"^(?:[a-z][a-z0-9+.-]*://)?(?:www\.)?([^/?#\s]+)", re.IGNORECASE)


def normalize_domain(domain: Optional[str]) -> str:
    """Lower-case a domain and strip protocol, ``www.``, trailing slash and port."""
    if not domain:
        return ""

    normalized = domain.lower()
    previous = None
    # Repeat until stable so the result is a fixed point ("x.com/:80/", "http://www.www.x").
    while normalized != previous:
        previous = normalized
        normalized = _PROTOCOL.sub("", normalized.strip())
        if normalized.startswith("www."):
            normalized = normalized[4:]
        normalized = _PORT.sub("", normalized.rstrip("/"))
    return normalized


def extract_domain_from_url(url: Optional[str]) -> str:
    """Host of ``url``, normalized; scraped hrefs are often malformed so a regex backs up urlparse."""
    if not url:
        return ""
    try:
        host = urlparse(url.strip()).hostname
    except ValueError:
        host = None
    if host:
        return normalize_domain(host)

    match = _HOST_FALLBACK.match(url.strip())
    return normalize_domain(match.group(1)) if match else normalize_domain(url)


def domain_matches(url: str, target_domain: str) -> bool:
    """True when ``url`` is on the target domain or one of its subdomains."""
    url_domain = extract_domain_from_url(url)
    target = normalize_domain(target_domain)
    if not url_domain or not target:
        return False
    return url_domain == target or url_domain.endswith(f".{target}")


def extract_rank(serp_response: GeoSerpResponse, target_domain: str) -> RankExtractionResult:
    target = normalize_domain(target_domain)
    result = RankExtractionResult(serp_features=list(serp_response.serp_features or []))

    # Organic results are position-ordered, so the first hit is the best rank.
    for item in serp_response.organic:
        if domain_matches(item.url, target):
            result.organic_rank = item.position
            result.organic_url = item.url
            result.organic_title = item.title
            result.organic_snippet = item.snippet
            break

    for entry in serp_response.local_pack:
        matches_website = bool(entry.website) and domain_matches(entry.website, target)
        # Many local pack entries have no website; fall back to the business name.
        title_contains_domain = bool(target) and target in (entry.title or "").lower()
        if matches_website or title_contains_domain:
            result.local_pack_rank = entry.position
            result.is_in_local_pack = True
            break

    for item in serp_response.organic:
        if len(result.top_competitors) >= MAX_COMPETITORS:
            break
        if domain_matches(item.url, target):
            continue
        result.top_competitors.append(
            CompetitorResult(
                domain=extract_domain_from_url(item.url),
                position=item.position,
                title=item.title,
                url=item.url,
            )
        )

    return result


def calculate_point_visibility_score(rank: Optional[int]) -> int:
    """101 - rank for ranks 1..100, otherwise 0."""
    if rank is None or rank <= 0 or rank > 100:
        return 0
    return 101 - rank


def get_rank_tier(rank: Optional[int]) -> str:
    if rank is None:
        return "not_found"
    if rank <= 3:
        return "excellent"
    if rank <= 10:
        return "good"
    if rank <= 20:
        return "moderate"
    if rank <= 50:
        return "poor"
    return "bad"


def get_rank_color(rank: Optional[int]) -> str:
    return RANK_TIER_COLORS[get_rank_tier(rank)]


def calculate_aggregate_stats(results: Iterable[RankExtractionResult], total_points: int) -> GridAggregateStats:
    """Reduce per-point ranks into scan statistics.

    Rank averages only cover points where the domain ranked. The visibility
    score is measured against every point ranking #1, so scans with different
    grid sizes stay comparable; points missing from ``results`` count as not
    found.
    """
    ranks: List[int] = []
    local_pack_positions: List[int] = []
    points_in_local_pack = 0
    visibility_sum = 0

    for result in results:
        if result.organic_rank is not None:
            ranks.append(result.organic_rank)
            visibility_sum += calculate_point_visibility_score(result.organic_rank)
        if result.is_in_local_pack:
            points_in_local_pack += 1
            if result.local_pack_rank is not None:
                local_pack_positions.append(result.local_pack_rank)

    points_ranking = len(ranks)
    max_visibility = total_points * 100
    visibility_score = (visibility_sum / max_visibility) * 100 if max_visibility > 0 else 0.0

    return GridAggregateStats(
        avg_rank=round(sum(ranks) / points_ranking, 2) if ranks else None,
        best_rank=min(ranks) if ranks else None,
        worst_rank=max(ranks) if ranks else None,
        points_ranking=points_ranking,
        points_top3=sum(1 for rank in ranks if rank <= 3),
        points_top10=sum(1 for rank in ranks if rank <= 10),
        points_top20=sum(1 for rank in ranks if rank <= 20),
        points_not_found=total_points - points_ranking,
        total_points=total_points,
        points_in_local_pack=points_in_local_pack,
        avg_local_pack_position=(
            round(sum(local_pack_positions) / len(local_pack_positions), 2) if local_pack_positions else None
        ),
        visibility_score=round(visibility_score, 2),
    )
