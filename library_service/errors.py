from fastapi import status


class LibraryError(Exception):
    """
    Base class for expected, user-facing failures.

    Each subclass carries the HTTP status it is reported with, so the
    exception handler in endpoints.py needs no per-error mapping.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(LibraryError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: int):
        super().__init__(f"{entity} with id {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InventoryUnavailable(LibraryError):
    """No copy of the book is free to lend (or the book does not exist)."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, book_id: int):
        super().__init__(f"Book with id {book_id} is not available for loan")
        self.book_id = book_id


class AlreadyReturned(LibraryError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, loan_id: int):
        super().__init__(f"Loan with id {loan_id} has already been returned")
        self.loan_id = loan_id


class RecordInUse(LibraryError):
    """A member or book cannot be removed while loans still reference it."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, entity_id: int):
        super().__init__(
            f"{entity} with id {entity_id} still has loan records and cannot be deleted"
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(LibraryError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str = "Invalid request data", errors=None):
        super().__init__(detail)
        self.errors = errors or []
