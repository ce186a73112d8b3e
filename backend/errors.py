"""
Domain errors raised by the flow controllers.

Each error carries the HTTP status the routes should answer with, so a
route only has to do:

    except DomainError as e:
        return jsonify({"message": e.message}), e.status_code
"""


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(DomainError):
    status_code = 400
    default_message = "Invalid input"


class NotFoundError(DomainError):
    status_code = 404
    default_message = "Not found"


class ForbiddenError(DomainError):
    status_code = 403
    default_message = "Permission denied"


class ConflictError(DomainError):
    status_code = 409
    default_message = "Already exists"


class InvalidLinkError(DomainError):
    # Every token-join failure shares this message.
    status_code = 400
    default_message = "Invalid or expired link"


class InvalidCodeError(DomainError):
    # Unknown user, missing request, expired request, wrong code and lockout
    # all share this message.
    status_code = 400
    default_message = "Invalid code or expired"
