"""Domain errors shared by the REST routers, the realtime channel and the scheduler.

Every error carries the HTTP status it maps to and a stable `code` that is
sent to clients (REST body or realtime `error` event).
"""


class CollabError(Exception):
    status_code = 500
    code = "Error"
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(CollabError):
    status_code = 401
    code = "Unauthorized"
    default_message = "Could not validate credentials"


class Forbidden(CollabError):
    status_code = 403
    code = "Forbidden"
    default_message = "Insufficient permissions"


class NotFound(CollabError):
    status_code = 404
    code = "NotFound"
    default_message = "Not found"


class InvalidOperation(CollabError):
    status_code = 400
    code = "InvalidOperation"
    default_message = "Invalid operation"


class AlreadyMember(CollabError):
    status_code = 400
    code = "AlreadyMember"
    default_message = "You are already a member of this list"


class EmailMismatch(CollabError):
    status_code = 403
    code = "EmailMismatch"
    default_message = "This invitation is not for you"


class InvalidToken(CollabError):
    status_code = 400
    code = "InvalidToken"
    default_message = "Invalid or expired token"


class Conflict(CollabError):
    status_code = 409
    code = "Conflict"
    default_message = "Already exists"


class Transient(CollabError):
    status_code = 503
    code = "Transient"
    default_message = "Temporary failure, try again"
