"""
Loan lifecycle and inventory consistency.

Every operation here that writes runs inside one transaction and keeps the
invariant

    book.available_quantity == book.quantity - (active loans on that book)

for books whose quantity has not been edited since they were catalogued.
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from library_service import inventory, models
from library_service.database import transaction
from library_service.errors import AlreadyReturned, InventoryUnavailable, NotFound
from library_service.sequences import next_number


logger = logging.getLogger(__name__)

LOAN_PERIOD = timedelta(days=7)
FINE_PER_DAY = Decimal("1000")
CENTS = Decimal("0.01")


def calculate_fine(due_date: datetime, return_date: datetime) -> Decimal:
    """
    Fine for returning a book at return_date when it was due at due_date.

    Every started day past the due date costs FINE_PER_DAY, so one second
    late is already a full day. Returning on or before the due date is free.
    """
    diff_days = math.ceil((return_date - due_date) / timedelta(days=1))
    if diff_days > 0:
        return (FINE_PER_DAY * diff_days).quantize(CENTS)
    return Decimal("0").quantize(CENTS)


def _loans_query(db: Session):
    return db.query(models.Loan).options(
        joinedload(models.Loan.member), joinedload(models.Loan.book)
    )


def get_loan(db: Session, loan_id: int) -> Optional[models.Loan]:
    return _loans_query(db).filter(models.Loan.id == loan_id).first()


def list_loans(db: Session) -> List[models.Loan]:
    """All loans with member and book attached, most recent first."""
    return (
        _loans_query(db)
        .order_by(models.Loan.created_at.desc(), models.Loan.id.desc())
        .all()
    )


def list_active_loans(db: Session) -> List[models.Loan]:
    return (
        _loans_query(db)
        .filter(models.Loan.status == models.LOAN_ACTIVE)
        .order_by(models.Loan.created_at.desc(), models.Loan.id.desc())
        .all()
    )


def list_overdue_loans(db: Session, now: Optional[datetime] = None) -> List[models.Loan]:
    """
    Active loans whose due date has passed.

    This is only a filter. The matching loans keep status "active".
    """
    now = now or datetime.now()
    return (
        _loans_query(db)
        .filter(
            models.Loan.status == models.LOAN_ACTIVE,
            models.Loan.due_date <= now,
        )
        .order_by(models.Loan.created_at.desc(), models.Loan.id.desc())
        .all()
    )


def create_loan(
    db: Session, member_id: int, book_id: int, now: Optional[datetime] = None
) -> models.Loan:
    """
    Lend one copy of a book to a member.

    Business Logic:
    1. The member must exist
    2. One copy is taken with a conditional decrement; if none is free the
       whole operation fails and nothing is written
    3. The loan gets the next loan number and is due LOAN_PERIOD from now

    Raises:
        NotFound: member does not exist, or was removed before the loan
            could be written (the foreign key rejects the insert)
        InventoryUnavailable: book does not exist or has no free copy
    """
    now = now or datetime.now()

    if db.get(models.Member, member_id) is None:
        raise NotFound("Member", member_id)

    try:
        with transaction(db):
            if not inventory.decrement_availability(db, book_id):
                logger.warning("Loan rejected: book %s has no available copy", book_id)
                raise InventoryUnavailable(book_id)

            loan = models.Loan(
                loan_number=next_number(db, "loans"),
                member_id=member_id,
                book_id=book_id,
                loan_date=now,
                due_date=now + LOAN_PERIOD,
                return_date=None,
                fine=Decimal("0.00"),
                status=models.LOAN_ACTIVE,
                created_at=now,
                updated_at=now,
            )
            db.add(loan)
    except IntegrityError as exc:
        logger.warning("Loan rejected: member %s was removed meanwhile", member_id)
        raise NotFound("Member", member_id) from exc

    db.refresh(loan)
    logger.info(
        "Loan %s created: member %s, book %s, due %s",
        loan.loan_number,
        member_id,
        book_id,
        loan.due_date.isoformat(),
    )
    return loan


def return_book(
    db: Session, loan_id: int, now: Optional[datetime] = None
) -> models.Loan:
    """
    Record the return of a loaned copy.

    The status change is guarded by status = 'active' in the UPDATE itself,
    so when two returns (or a return and a delete) race, only the winner
    gives the copy back.

    Raises:
        NotFound: loan does not exist
        AlreadyReturned: loan is no longer active
    """
    now = now or datetime.now()

    with transaction(db):
        loan = db.get(models.Loan, loan_id)
        if loan is None:
            raise NotFound("Loan", loan_id)
        if loan.status != models.LOAN_ACTIVE:
            logger.warning("Return rejected: loan %s is %s", loan_id, loan.status)
            raise AlreadyReturned(loan_id)

        fine = calculate_fine(loan.due_date, now)
        result = db.execute(
            update(models.Loan)
            .where(
                models.Loan.id == loan_id,
                models.Loan.status == models.LOAN_ACTIVE,
            )
            .values(
                status=models.LOAN_RETURNED,
                return_date=now,
                fine=fine,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Return rejected: loan %s changed concurrently", loan_id)
            raise AlreadyReturned(loan_id)

        inventory.increment_availability(db, loan.book_id)

    db.refresh(loan)
    logger.info("Loan %s returned with fine %s", loan.loan_number, loan.fine)
    return loan


def delete_loan(db: Session, loan_id: int) -> bool:
    """
    Remove a loan record.

    An active loan still holds a copy, so that copy goes back on the shelf
    before the row disappears. A returned loan already gave its copy back.
    Deleting a missing loan does nothing.

    Returns:
        True if a copy was restored to inventory
    """
    with transaction(db):
        loan = db.get(models.Loan, loan_id)
        if loan is None:
            return False
        book_id = loan.book_id

        removed_active = db.execute(
            delete(models.Loan)
            .where(
                models.Loan.id == loan_id,
                models.Loan.status == models.LOAN_ACTIVE,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if removed_active:
            inventory.increment_availability(db, book_id)
        else:
            db.execute(
                delete(models.Loan)
                .where(models.Loan.id == loan_id)
                .execution_options(synchronize_session=False)
            )
        db.expunge(loan)

    logger.info(
        "Loan %s deleted (inventory restored: %s)", loan_id, bool(removed_active)
    )
    return bool(removed_active)
