"""Square sampling grids around a business location."""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

from geogrid.models import GridConfig, GridPoint, IsoWeek

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE = 69.0

GRID_SIZES = (3, 5, 7)
RADIUS_OPTIONS = (1, 3, 5, 10, 15, 25)


def generate_grid_points(
    center_lat: float,
    center_lng: float,
    grid_size: int,
    radius_miles: float,
) -> List[GridPoint]:
    """Return ``grid_size`` x ``grid_size`` points spanning ``radius_miles`` each way from the center.

    Points are row-major with row 0 on the northern edge. Each point's distance
    is the great-circle distance back to the center, not the planar offset.
    """
    step_miles = (radius_miles * 2) / (grid_size - 1)
    half = grid_size // 2

    points: List[GridPoint] = []
    for row in range(grid_size):
        for col in range(grid_size):
            east_miles = (col - half) * step_miles
            north_miles = (half - row) * step_miles
            lat, lng = _offset_lat_lng(center_lat, center_lng, north_miles, east_miles)
            distance = calculate_distance(center_lat, center_lng, lat, lng)
            points.append(
                GridPoint(
                    row=row,
                    col=col,
                    lat=round(lat, 7),
                    lng=round(lng, 7),
                    distance_from_center=round(distance, 2),
                )
            )

    logger.debug(
        "Generated %d grid points around (%s, %s) step=%.3f miles",
        len(points),
        center_lat,
        center_lng,
        step_miles,
    )
    return points


def _offset_lat_lng(lat: float, lng: float, north_miles: float, east_miles: float) -> Tuple[float, float]:
    # A degree of longitude shrinks with cos(latitude).
    lat_offset = north_miles / MILES_PER_DEGREE
    lng_offset = east_miles / (MILES_PER_DEGREE * math.cos(math.radians(lat)))
    return lat + lat_offset, lng + lng_offset


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def get_grid_point_count(grid_size: int) -> int:
    return grid_size * grid_size


def get_grid_center(grid_size: int) -> Tuple[int, int]:
    center = grid_size // 2
    return center, center


def is_grid_center(row: int, col: int, grid_size: int) -> bool:
    return (row, col) == get_grid_center(grid_size)


def validate_grid_config(
    config: GridConfig,
    center_lat: Optional[float] = None,
    center_lng: Optional[float] = None,
) -> List[str]:
    """Collect every problem with a grid configuration; an empty list means it is usable."""
    errors: List[str] = []

    if config.grid_size not in GRID_SIZES:
        errors.append("Grid size must be 3, 5, or 7")
    if config.radius_miles not in RADIUS_OPTIONS:
        errors.append("Radius must be 1, 3, 5, 10, 15, or 25 miles")
    if center_lat is not None and not -90 <= center_lat <= 90:
        errors.append("Center latitude must be between -90 and 90")
    if center_lng is not None and not -180 <= center_lng <= 180:
        errors.append("Center longitude must be between -180 and 180")

    return errors


def get_iso_week(value: Optional[Union[date, datetime]] = None) -> IsoWeek:
    """ISO-8601 week bucket used to schedule recurring scans."""
    if value is None:
        value = date.today()
    iso_year, week_number, _ = value.isocalendar()
    return IsoWeek(week_number=week_number, year=iso_year)
