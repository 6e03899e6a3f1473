from sqlalchemy import update
from sqlalchemy.orm import Session

from library_service import models


def decrement_availability(db: Session, book_id: int) -> bool:
    """
    Take one copy of a book off the shelf.

    Check and decrement are the same statement: the WHERE clause only
    matches while a copy is free, so two callers racing for the last copy
    cannot both succeed.

    Returns:
        True if a copy was taken, False if the book is missing or has none left
    """
    result = db.execute(
        update(models.Book)
        .where(models.Book.id == book_id, models.Book.available_quantity > 0)
        .values(available_quantity=models.Book.available_quantity - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_availability(db: Session, book_id: int) -> None:
    db.execute(
        update(models.Book)
        .where(models.Book.id == book_id)
        .values(available_quantity=models.Book.available_quantity + 1)
        .execution_options(synchronize_session=False)
    )
