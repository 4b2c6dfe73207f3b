"""
Error taxonomy for the catalog service.

Every error carries a stable machine-checkable ``kind`` and the HTTP status the
API layer maps it to. The message is safe to show to clients.
"""


class CatalogError(Exception):
    kind = "CatalogError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(CatalogError):
    kind = "NotFound"
    status_code = 404


class DuplicateMember(CatalogError):
    kind = "DuplicateMember"
    status_code = 400


class InvalidPosition(CatalogError):
    kind = "InvalidPosition"
    status_code = 400


class PermissionDenied(CatalogError):
    kind = "PermissionDenied"
    status_code = 403


class InvalidOperation(CatalogError):
    kind = "InvalidOperation"
    status_code = 400


class InvalidState(CatalogError):
    """Stored aggregate is inconsistent (e.g. a rating bucket would go negative)."""
    kind = "InvalidState"
    status_code = 409


class Unauthenticated(CatalogError):
    kind = "Unauthenticated"
    status_code = 401


class ConcurrentModification(CatalogError):
    kind = "ConcurrentModification"
    status_code = 409


class StoreUnavailable(CatalogError):
    kind = "StoreUnavailable"
    status_code = 503
