"""HTTP entrypoint that runs geo-grid scans (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from geogrid.core.config import ConfigError, get_settings
from geogrid.core.grid import get_iso_week, validate_grid_config
from geogrid.jobs.run_scan import run_grid_scan
from geogrid.models import GridConfig

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; only reads env-based settings."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "structured_first": settings.structured_first,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/iso-week")
def iso_week() -> Any:
    """ISO week bucket for today or for ``?date=YYYY-MM-DD``."""
    raw = request.args.get("date")
    value: Optional[date] = None
    if raw:
        try:
            value = date.fromisoformat(raw)
        except ValueError:
            return jsonify({"error": "date must be YYYY-MM-DD"}), 400
    week = get_iso_week(value)
    return jsonify({"data": {"week_number": week.week_number, "year": week.year}}), 200


@app.post("/scan")
def scan() -> Any:
    """
    Run a geo-grid scan and return one result per keyword.
    Required JSON fields: keyword or keywords, target_domain, center_lat, center_lng
    Optional: grid_size (default 5), radius_miles (default 5), max_concurrent, requests_per_second
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    keywords = _parse_keywords(payload)
    required = ("target_domain", "center_lat", "center_lng")
    missing = [f for f in required if payload.get(f) in (None, "")]
    if not keywords:
        missing.insert(0, "keyword")
    if missing:
        return jsonify({"error": f"missing fields: {', '.join(missing)}"}), 400

    try:
        center_lat = float(payload["center_lat"])
        center_lng = float(payload["center_lng"])
    except (TypeError, ValueError):
        return jsonify({"error": "center_lat and center_lng must be numeric"}), 400

    try:
        grid_size = int(payload.get("grid_size", 5))
        radius_miles = float(payload.get("radius_miles", 5))
    except (TypeError, ValueError):
        return jsonify({"error": "grid_size and radius_miles must be numeric"}), 400

    errors = validate_grid_config(GridConfig(grid_size=grid_size, radius_miles=radius_miles), center_lat, center_lng)
    if errors:
        return jsonify({"error": "invalid grid configuration", "details": errors}), 400

    limits: Dict[str, Any] = {}
    for field_name, cast in (("max_concurrent", int), ("requests_per_second", float)):
        raw = payload.get(field_name)
        if raw is None:
            continue
        try:
            limits[field_name] = cast(raw)
        except (TypeError, ValueError):
            return jsonify({"error": f"{field_name} must be numeric"}), 400
        if limits[field_name] <= 0:
            return jsonify({"error": f"{field_name} must be positive"}), 400

    logger.info("Running geo-grid scan keywords=%s domain=%s", keywords, payload["target_domain"])
    try:
        scans = run_grid_scan(
            keywords=keywords,
            target_domain=str(payload["target_domain"]),
            center_lat=center_lat,
            center_lng=center_lng,
            grid_size=grid_size,
            radius_miles=radius_miles,
            **limits,
        )
    except ConfigError as exc:
        logger.error("Scan rejected by configuration: %s", exc)
        return jsonify({"error": str(exc)}), 500

    return jsonify({"data": [result.to_dict() for result in scans]}), 200


# ---------- Internals ----------


def _parse_keywords(payload: Dict[str, Any]) -> List[str]:
    raw = payload.get("keywords")
    if raw is None:
        raw = [payload.get("keyword")]
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return []
    return [str(keyword).strip() for keyword in raw if keyword is not None and str(keyword).strip()]


def main() -> None:
    """Cloud Run injects PORT; fall back to WORKER_PORT locally."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
