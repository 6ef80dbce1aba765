"""
Health Check Endpoint

GET /api/health reports process uptime, database reachability and the
startup validation outcome. 200 when the database answers, 503 otherwise.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Dict, Any

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

from models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__, url_prefix='/api')

# Track startup time for uptime calculation
_startup_time = time.time()


def get_uptime_seconds() -> float:
    return time.time() - _startup_time


def check_database_health() -> Dict[str, Any]:
    """Run SELECT 1 and time it."""
    start = time.time()
    try:
        db.session.execute(text("SELECT 1")).fetchone()
        db.session.rollback()  # Don't leave open transaction
        return {
            "healthy": True,
            "latency_ms": round((time.time() - start) * 1000, 2),
        }
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {
            "healthy": False,
            "latency_ms": round((time.time() - start) * 1000, 2),
            "error": str(e)[:100],
        }


@health_bp.route('/health', methods=['GET'])
def health():
    database = check_database_health()
    report = current_app.extensions.get('startup_report')

    body = {
        "status": "ok" if database["healthy"] else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(get_uptime_seconds(), 1),
        "database": database,
    }
    if report is not None:
        body["features"] = {"loaded": report.features_loaded, "degraded": report.features_degraded}

    return jsonify(body), 200 if database["healthy"] else 503
