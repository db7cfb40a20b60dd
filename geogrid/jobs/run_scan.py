"""Run a geo-grid rank scan: one SERP lookup per grid point and keyword."""

from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from geogrid.core.config import ConfigError, get_settings
from geogrid.core.grid import GRID_SIZES, RADIUS_OPTIONS, generate_grid_points, validate_grid_config
from geogrid.core.rate_limiter import BatchExecutor, ProgressCallback, RateLimiterConfig
from geogrid.etl.rank_extractor import calculate_aggregate_stats, extract_rank, normalize_domain
from geogrid.models import (
    GeoSerpRequest,
    GridConfig,
    GridPoint,
    GridScanResult,
    PointRank,
    RankExtractionResult,
)
from geogrid.vendors.serp_client import SerpClient, is_retryable_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanWorkItem:
    point: GridPoint
    keyword: str

    @property
    def label(self) -> str:
        return f"{self.keyword} @ ({self.point.row},{self.point.col})"


class GridScanner:
    """Runs scans through one shared client; the client is injected so tests can substitute it."""

    def __init__(
        self,
        client: SerpClient,
        limiter_config: Optional[RateLimiterConfig] = None,
        *,
        num_results: int = 20,
        device: str = "desktop",
    ) -> None:
        self.client = client
        self.limiter_config = limiter_config or RateLimiterConfig()
        self.num_results = num_results
        self.device = device

    def scan(
        self,
        keyword: str,
        target_domain: str,
        center_lat: float,
        center_lng: float,
        config: GridConfig,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> GridScanResult:
        return self.scan_keywords(
            [keyword],
            target_domain,
            center_lat,
            center_lng,
            config,
            on_progress=on_progress,
            cancel_event=cancel_event,
        )[0]

    def scan_keywords(
        self,
        keywords: Sequence[str],
        target_domain: str,
        center_lat: float,
        center_lng: float,
        config: GridConfig,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[GridScanResult]:
        """Scan every keyword over the same grid in a single rate-limited batch.

        Raises ConfigError before any request is made when the grid, the
        inputs or the client credentials are invalid. Per-point failures never
        raise; they show up as not-found ranks.
        """
        cleaned_keywords = [keyword.strip() for keyword in keywords if keyword and keyword.strip()]
        errors = validate_grid_config(config, center_lat, center_lng)
        if not cleaned_keywords:
            errors.append("At least one keyword is required")
        if not normalize_domain(target_domain):
            errors.append("Target domain is required")
        if errors:
            raise ConfigError("; ".join(errors))
        self.client.ensure_configured()

        points = generate_grid_points(center_lat, center_lng, config.grid_size, config.radius_miles)
        items = [ScanWorkItem(point=point, keyword=keyword) for keyword in cleaned_keywords for point in points]
        logger.info(
            "Starting geo-grid scan domain=%s keywords=%d points=%d queries=%d",
            target_domain,
            len(cleaned_keywords),
            len(points),
            len(items),
        )

        executor: BatchExecutor[ScanWorkItem, RankExtractionResult] = BatchExecutor(
            self.limiter_config,
            should_retry=is_retryable_error,
            cancel_event=cancel_event,
        )
        outcome = executor.execute_batch(
            items,
            lambda item: self._scan_point(item, target_domain),
            label=lambda item: item.label,
            on_progress=on_progress,
        )
        failures: Dict[int, BaseException] = dict(outcome.errors)

        scans: List[GridScanResult] = []
        for keyword in cleaned_keywords:
            per_point: List[PointRank] = []
            error_messages: List[str] = []
            for index, item in enumerate(items):
                if item.keyword != keyword:
                    continue
                if index in failures:
                    error_messages.append(f"Point ({item.point.row},{item.point.col}): {failures[index]}")
                    per_point.append(
                        PointRank(
                            point=item.point,
                            keyword=keyword,
                            rank=RankExtractionResult.not_found(),
                            error=str(failures[index]),
                        )
                    )
                elif outcome.results[index] is not None:
                    per_point.append(PointRank(point=item.point, keyword=keyword, rank=outcome.results[index]))

            aggregate = calculate_aggregate_stats([entry.rank for entry in per_point], len(points))
            scans.append(
                GridScanResult(
                    keyword=keyword,
                    target_domain=normalize_domain(target_domain),
                    config=config,
                    points=points,
                    per_point_ranks=per_point,
                    aggregate=aggregate,
                    cancelled=outcome.cancelled,
                    api_calls_made=sum(1 for entry in per_point if entry.error is None),
                    error_count=len(error_messages),
                    error_messages=error_messages,
                )
            )
            logger.info(
                "Completed scan keyword=%s visibility=%.2f ranking=%d/%d errors=%d",
                keyword,
                aggregate.visibility_score,
                aggregate.points_ranking,
                aggregate.total_points,
                len(error_messages),
            )
        return scans

    def _scan_point(self, item: ScanWorkItem, target_domain: str) -> RankExtractionResult:
        request = GeoSerpRequest(
            keyword=item.keyword,
            lat=item.point.lat,
            lng=item.point.lng,
            num_results=self.num_results,
            device=self.device,
        )
        response = self.client.fetch_serp(request)
        return extract_rank(response, target_domain)


def run_grid_scan(
    *,
    keywords: Sequence[str],
    target_domain: str,
    center_lat: float,
    center_lng: float,
    grid_size: int,
    radius_miles: float,
    max_concurrent: Optional[int] = None,
    requests_per_second: Optional[float] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[GridScanResult]:
    """Build the client and limits from settings and scan every keyword."""
    settings = get_settings()
    limiter_config = RateLimiterConfig.from_settings(
        settings,
        max_concurrent=max_concurrent,
        requests_per_second=requests_per_second,
    )
    scanner = GridScanner(SerpClient.from_settings(settings), limiter_config)
    return scanner.scan_keywords(
        keywords,
        target_domain,
        center_lat,
        center_lng,
        GridConfig(grid_size=grid_size, radius_miles=radius_miles),
        on_progress=on_progress,
        cancel_event=cancel_event,
    )


def _log_progress(completed: int, total: int, current: Optional[str]) -> None:
    logger.info("Progress %d/%d %s", completed, total, current or "")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run a geo-grid rank scan")
    parser.add_argument("--keyword", dest="keywords", action="append", required=True, help="Keyword to scan (repeatable)")
    parser.add_argument("--domain", dest="target_domain", required=True, help="Domain whose rank is tracked")
    parser.add_argument("--lat", dest="center_lat", type=float, required=True, help="Business latitude")
    parser.add_argument("--lng", dest="center_lng", type=float, required=True, help="Business longitude")
    parser.add_argument("--grid-size", dest="grid_size", type=int, choices=GRID_SIZES, default=5, help="Points per side")
    parser.add_argument(
        "--radius",
        dest="radius_miles",
        type=float,
        choices=RADIUS_OPTIONS,
        default=5,
        help="Miles from the center to the grid edge",
    )
    parser.add_argument(
        "--max-concurrent",
        dest="max_concurrent",
        type=int,
        default=settings.max_concurrent,
        help="Concurrent SERP requests",
    )
    parser.add_argument(
        "--rps",
        dest="requests_per_second",
        type=float,
        default=settings.requests_per_second,
        help="Request-rate ceiling shared by all workers",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        scans = run_grid_scan(
            keywords=args.keywords,
            target_domain=args.target_domain,
            center_lat=args.center_lat,
            center_lng=args.center_lng,
            grid_size=args.grid_size,
            radius_miles=args.radius_miles,
            max_concurrent=args.max_concurrent,
            requests_per_second=args.requests_per_second,
            on_progress=_log_progress,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except Exception as exc:  # pragma: no cover - CLI fallback
        logger.error("Geo-grid scan failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc

    print(json.dumps([scan.to_dict() for scan in scans], indent=2))


if __name__ == "__main__":
    main()
