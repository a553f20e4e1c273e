from flask import Blueprint, current_app
from sqlalchemy import text

from payroll_api.common.http import ok, fail
from payroll_api.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api/v1")


@bp.get("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as e:
        current_app.logger.error("health check: database unreachable: %s", e)
        return fail("database unreachable", status=503)
    return ok({"status": "ok"})
