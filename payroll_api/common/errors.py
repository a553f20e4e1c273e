# payroll_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from payroll_api.common.http import fail


class PayrollError(Exception):
    """Base for errors raised by the payroll core."""
    code = "PAYROLL_ERROR"
    status_code = 400

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload


class ValidationError(PayrollError):
    """Malformed or out-of-range input (negative salary, non-numeric field...)."""
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message, field=None):
        super().__init__(message, payload={"field": field} if field else None)
        self.field = field


class ConfigurationMissing(PayrollError):
    """No GOSI rate row applies and statutory defaults are disabled."""
    code = "CONFIGURATION_MISSING"
    status_code = 422


class ConcurrencyConflict(PayrollError):
    code = "CONCURRENCY_CONFLICT"
    status_code = 409


class NotFound(PayrollError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidState(PayrollError):
    code = "INVALID_STATE"
    status_code = 409


class BandViolation:
    """Advisory warning: basic salary outside its band. Never raised."""
    code = "BAND_VIOLATION"

    def __init__(self, basic_salary, minimum, maximum, position):
        self.basic_salary = basic_salary
        self.minimum = minimum
        self.maximum = maximum
        self.position = position  # "below" | "above"

    @property
    def message(self):
        return (f"basic salary {self.basic_salary} is {self.position} band "
                f"[{self.minimum}, {self.maximum}]")

    def to_dict(self):
        return {
            "code": self.code,
            "message": self.message,
            "position": self.position,
            "basic_salary": str(self.basic_salary),
            "minimum_salary": str(self.minimum),
            "maximum_salary": str(self.maximum),
        }


class PartialBatchFailure:
    """Reported status of a batch run where some employees failed. Never raised."""
    code = "PARTIAL_BATCH_FAILURE"

    def __init__(self, failures):
        self.failures = list(failures)

    def __bool__(self):
        return bool(self.failures)

    def to_dict(self):
        return {"code": self.code, "failed": len(self.failures)}


def register_error_handlers(app):
    @app.errorhandler(PayrollError)
    def _payroll(e: PayrollError):
        if e.status_code >= 500:
            app.logger.exception(e)
        return fail(e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _integrity(e: IntegrityError):
        from payroll_api.extensions import db
        db.session.rollback()
        return fail("Conflict / integrity error", status=409, code="CONSTRAINT_ERROR",
                    detail=str(e.orig) if getattr(e, "orig", None) else str(e))

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
