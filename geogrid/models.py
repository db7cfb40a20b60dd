"""Core data models shared by the geo-grid rank tracking engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True, slots=True)
class GridConfig:
    grid_size: int
    radius_miles: float


@dataclass(frozen=True, slots=True)
class GridPoint:
    """One sample coordinate of a scan grid; row 0 is the northern edge."""

    row: int
    col: int
    lat: float
    lng: float
    distance_from_center: float


@dataclass(slots=True)
class GeoSerpRequest:
    keyword: str
    lat: float
    lng: float
    num_results: int = 20
    device: str = "desktop"


@dataclass(slots=True)
class OrganicResult:
    position: int
    title: str
    url: str
    domain: str
    snippet: str = ""


@dataclass(slots=True)
class LocalPackResult:
    position: int
    title: str
    address: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    place_id: Optional[str] = None


@dataclass(slots=True)
class GeoSerpResponse:
    """Normalized result page: organic listings by ascending position plus the local pack."""

    organic: List[OrganicResult] = field(default_factory=list)
    local_pack: List[LocalPackResult] = field(default_factory=list)
    serp_features: List[str] = field(default_factory=list)
    total_results: Optional[int] = None
    search_time: Optional[float] = None


@dataclass(slots=True)
class CompetitorResult:
    domain: str
    position: int
    title: str
    url: str


@dataclass(slots=True)
class RankExtractionResult:
    """Where the target domain sits on one result page."""

    organic_rank: Optional[int] = None
    organic_url: Optional[str] = None
    organic_title: Optional[str] = None
    organic_snippet: Optional[str] = None
    local_pack_rank: Optional[int] = None
    is_in_local_pack: bool = False
    top_competitors: List[CompetitorResult] = field(default_factory=list)
    serp_features: List[str] = field(default_factory=list)

    @classmethod
    def not_found(cls) -> "RankExtractionResult":
        return cls()


@dataclass(slots=True)
class GridAggregateStats:
    avg_rank: Optional[float]
    best_rank: Optional[int]
    worst_rank: Optional[int]
    points_ranking: int
    points_top3: int
    points_top10: int
    points_top20: int
    points_not_found: int
    total_points: int
    points_in_local_pack: int
    avg_local_pack_position: Optional[float]
    visibility_score: float


@dataclass(slots=True)
class PointRank:
    """Outcome of one (grid point, keyword) lookup; ``error`` is set when the fetch failed."""

    point: GridPoint
    keyword: str
    rank: RankExtractionResult
    error: Optional[str] = None


@dataclass(slots=True)
class GridScanResult:
    keyword: str
    target_domain: str
    config: GridConfig
    points: List[GridPoint]
    per_point_ranks: List[PointRank]
    aggregate: GridAggregateStats
    cancelled: bool = False
    api_calls_made: int = 0
    error_count: int = 0
    error_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class IsoWeek:
    week_number: int
    year: int
