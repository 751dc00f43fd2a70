"""Error taxonomy shared by the stores, the auth service and the API layer.

Every error carries the HTTP status it maps to; the API converts them into
``{"error": message}`` responses.
"""


class CalcStoreError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CalcStoreError):
    """Required input is missing or malformed."""

    status_code = 400
    default_message = "Invalid request"


class ConflictError(CalcStoreError):
    """A uniqueness constraint would be violated."""

    status_code = 400
    default_message = "Username or email already exists"


class InvalidCredentialsError(CalcStoreError):
    """Login failed. Unknown user and wrong password share this error."""

    status_code = 401
    default_message = "Invalid credentials"


class UnauthorizedError(CalcStoreError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(CalcStoreError):
    status_code = 404
    default_message = "Not found"


class CorruptDataError(CalcStoreError):
    """Stored payload text could not be decoded as JSON."""

    status_code = 500
    default_message = "Invalid session data"


class StorageError(CalcStoreError):
    status_code = 500
    default_message = "Database error"
