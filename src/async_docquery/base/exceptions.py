class DocumentQueryError(Exception):
    """Base class for all errors raised while building or running a query."""

    def __init__(self, message: str = "Document query error."):
        super().__init__(message)


# --- Construction-time errors ---
class InvalidArgumentError(DocumentQueryError, ValueError):
    """Raised for malformed builder input (negative limit, empty path, ...)."""

    def __init__(self, message: str = "Invalid argument."):
        super().__init__(message)


class InvalidFilterValueError(InvalidArgumentError):
    """Raised when None or NaN is paired with a non-equality operator."""

    def __init__(
        self,
        message: str = "null and NaN values can only be used with the equality operator.",
    ):
        super().__init__(message)


class SentinelValueRejectedError(InvalidArgumentError):
    """Raised when a delete or server-timestamp sentinel is used on the read side."""

    def __init__(
        self, message: str = "Sentinel values cannot be used in filters or cursors."
    ):
        super().__init__(message)


class InvalidCursorValuesError(InvalidArgumentError):
    """Raised for an empty or over-long explicit cursor value list."""

    def __init__(self, message: str = "Invalid cursor values."):
        super().__init__(message)


class InvalidDocumentIdCursorValueError(InvalidArgumentError):
    """Raised when a document-id cursor value is not a valid id or reference."""

    def __init__(
        self,
        message: str = (
            "A cursor value for a document ID must be a string (document id) "
            "or a DocumentReference in the query's collection."
        ),
    ):
        super().__init__(message)


class SnapshotCollectionMismatchError(InvalidArgumentError):
    """Raised when a cursor snapshot belongs to a different collection."""

    def __init__(self, message: str = "Snapshot was from incorrect collection."):
        super().__init__(message)


class MissingSnapshotFieldError(InvalidArgumentError):
    """Raised when a snapshot lacks a field needed by the query orderings."""

    def __init__(self, field_path, message: str = None):
        self.field_path = field_path
        super().__init__(message or f"Snapshot does not contain field {field_path}")


# --- State errors ---
class OrderingAfterCursorError(DocumentQueryError, RuntimeError):
    """Raised when an ordering is added after a start/end cursor."""

    def __init__(
        self,
        message: str = (
            "All orderings must be specified before start_at, start_after, "
            "end_before or end_at are called."
        ),
    ):
        super().__init__(message)


# --- Execution-time errors ---
class MissingReadTimestampError(DocumentQueryError, RuntimeError):
    """Raised when a query stream completes without reporting a read time."""

    def __init__(
        self,
        message: str = "The stream returned from run_query did not provide a read timestamp.",
    ):
        super().__init__(message)


class TransportError(DocumentQueryError, RuntimeError):
    """Wraps unexpected errors raised by a transport's driver."""

    def __init__(self, message: str = "An unexpected transport error occurred."):
        super().__init__(message)
