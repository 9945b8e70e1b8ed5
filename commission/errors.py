"""
Error taxonomy shared by the commission, withdrawal and leaderboard code.

Every engine failure is raised as a CommissionError subclass. The HTTP layer
turns them into JSON payloads with a stable `error` kind and status code.
"""


class CommissionError(Exception):
    """Base commission engine exception"""
    kind = "internal"
    status_code = 500

    def __init__(self, message=None, **details):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self):
        payload = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(CommissionError):
    kind = "not_found"
    status_code = 404


class InvalidStateError(CommissionError):
    kind = "invalid_state"
    status_code = 400


class ForbiddenError(CommissionError):
    kind = "forbidden"
    status_code = 403


class PlanNotAllowedError(CommissionError):
    kind = "plan_not_allowed"
    status_code = 400


class ConflictError(CommissionError):
    kind = "conflict"
    status_code = 409


class InsufficientFundsError(CommissionError):
    kind = "insufficient_funds"
    status_code = 400


class InvalidInputError(CommissionError):
    kind = "invalid_input"
    status_code = 400


class InternalError(CommissionError):
    kind = "internal"
    status_code = 500
