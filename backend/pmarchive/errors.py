"""Business-rule failures raised by the archive service.

Each error carries a stable ``code`` that the HTTP layer returns next to the
human-readable message. Storage failures are not wrapped here: they surface as
``sqlite3.OperationalError`` and are mapped to 503 by the global handler.
"""


class ArchiveError(Exception):
    """Base class for archive business-rule violations (client errors)."""

    code = "archive_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyArchived(ArchiveError):
    code = "already_archived"

    def __init__(self, message: str = "You already archived this item."):
        super().__init__(message)


class EntityNotFound(ArchiveError):
    code = "entity_not_found"


class ArchiveNotFound(ArchiveError):
    code = "archive_not_found"

    def __init__(self, message: str = "Archive record not found for this user."):
        super().__init__(message)
