# payroll_api/common/auth.py
from __future__ import annotations

from functools import wraps
from typing import Iterable, Optional, Set

from flask_jwt_extended import jwt_required, get_jwt, get_jwt_identity

from payroll_api.common.http import fail


def _wildcard_match(user_perm: str, required: str) -> bool:
    """
    Match required permission against a granted one with simple wildcards.
      'payroll.*'        matches 'payroll.batch.write'
      'payroll.batch.*'  matches 'payroll.batch.read'
    """
    if user_perm == required:
        return True
    if user_perm.endswith(".*"):
        return required.startswith(user_perm[:-2])
    return False


def _has_any_perm(user_perms: Set[str], required_perms: Iterable[str]) -> bool:
    if not required_perms:
        return True
    if not user_perms:
        return False
    for req in required_perms:
        if any(_wildcard_match(up, req) for up in user_perms):
            return True
    return False


def requires_perms(*perm_codes: str):
    """
    Require that the caller's JWT grants ANY of the given permission codes.

    Identity is issued by the external auth service; roles and perms travel
    as the 'roles' / 'perms' claims. The 'admin' role always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            if not perm_codes:
                return fn(*args, **kwargs)

            claims = get_jwt() or {}
            roles = set(claims.get("roles") or [])
            if "admin" in roles:
                return fn(*args, **kwargs)

            if get_jwt_identity() is None:
                return fail("Unauthorized", status=401)

            perms = set(claims.get("perms") or [])
            if not _has_any_perm(perms, perm_codes):
                return fail("Forbidden", status=403)
            return fn(*args, **kwargs)
        return inner
    return outer


def current_actor() -> Optional[str]:
    """JWT subject of the current request, used as changed_by / created_by."""
    ident = get_jwt_identity()
    return str(ident) if ident is not None else None
