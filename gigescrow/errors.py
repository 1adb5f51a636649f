"""Error taxonomy for the escrow core.

Every domain failure raised by the services derives from
``EscrowServiceError`` and carries a machine-readable ``kind`` plus the HTTP
status the API layer reports for it.
"""


class EscrowServiceError(Exception):
    """Base exception for escrow, dispute and notification operations."""

    kind = "EscrowServiceError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class NotFoundError(EscrowServiceError):
    """Referenced entity does not exist."""

    kind = "NotFound"
    status_code = 404


class InvalidStateError(EscrowServiceError):
    """Operation is not legal from the record's current lifecycle state."""

    kind = "InvalidState"
    status_code = 400


class InvalidArgumentError(EscrowServiceError):
    """Malformed or out-of-range input."""

    kind = "InvalidArgument"
    status_code = 400


class UnauthorizedError(EscrowServiceError):
    """Signer is not permitted or the signature does not verify."""

    kind = "Unauthorized"
    status_code = 400


class ConflictError(EscrowServiceError):
    """Duplicate dispute or a concurrent modification of the same record."""

    kind = "Conflict"
    status_code = 409


class VerificationFailedError(EscrowServiceError):
    """The chain answered, and the answer was negative."""

    kind = "VerificationFailed"
    status_code = 400


class ChainUnavailableError(EscrowServiceError):
    """The chain indexer could not be reached after retries."""

    kind = "ChainUnavailable"
    status_code = 503


class ChainSubmissionFailedError(EscrowServiceError):
    """A settlement transaction was rejected or could not be submitted."""

    kind = "ChainSubmissionFailed"
    status_code = 400


class StorageError(EscrowServiceError):
    """Persistence layer I/O failure."""

    kind = "StorageFailure"
    status_code = 500
