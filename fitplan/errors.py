"""
Domain errors for fitness planning.

Every error carries the HTTP status the API layer answers with.
"""


class FitPlanError(Exception):
    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ValidationError(FitPlanError):
    """Malformed or out-of-range input, rejected before anything is persisted."""
    status_code = 400


class PreconditionError(FitPlanError):
    """Insufficient catalog, no active plan, or a transition from the wrong state."""
    status_code = 409


class ConflictError(FitPlanError):
    status_code = 409


class SafetyRejection(FitPlanError):
    """A hard safety rule failed. `result` is the ValidationResult that failed."""
    status_code = 422

    def __init__(self, message, result=None):
        super().__init__(message, details=result.to_dict() if result is not None else None)
        self.result = result


class NotFoundError(FitPlanError):
    status_code = 404


class PermissionDenied(FitPlanError):
    status_code = 403


class ExternalDependencyDegradation(FitPlanError):
    """The AI reasoning collaborator is unavailable. Logged, never surfaced to callers."""
    status_code = 503
