# payroll_api/common/http.py
from datetime import date
from decimal import Decimal

from flask import jsonify, request


def ok(data=None, status=200, **meta):
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    err = {"message": message}
    if code: err["code"] = code
    if detail: err["detail"] = detail
    if errors: err["errors"] = errors
    return jsonify({"success": False, "error": err}), status


def json_body() -> dict:
    j = request.get_json(silent=True)
    return j if isinstance(j, dict) else {}


def d(s):
    if not s:
        return None
    try:
        return date.fromisoformat(str(s))
    except Exception:
        return None


def int_arg(name: str):
    """Integer query arg or None; ValueError when present but malformed."""
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    return int(raw)


def dec_str(x):
    """Exact decimal string (no rounding) for API payloads."""
    if x is None:
        return None
    return str(x if isinstance(x, Decimal) else Decimal(str(x)))
