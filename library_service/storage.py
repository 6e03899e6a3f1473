"""
Record storage for members, books and reports, plus dashboard counts.

None of this touches Book.available_quantity after a book is catalogued;
that counter belongs to the loan engine in loans.py.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from library_service import models, schemas
from library_service.database import transaction
from library_service.errors import NotFound, RecordInUse
from library_service.sequences import next_number


logger = logging.getLogger(__name__)


def _update_fields(record, update_data: dict) -> None:
    for key, value in update_data.items():
        setattr(record, key, value)


def _delete(db: Session, record, entity: str, record_id: int) -> None:
    try:
        with transaction(db):
            db.delete(record)
    except IntegrityError as exc:
        logger.warning("%s %s not deleted: still referenced by loans", entity, record_id)
        raise RecordInUse(entity, record_id) from exc


# Members


def list_members(db: Session, search: Optional[str] = None) -> List[models.Member]:
    """
    List members, newest first.

    When search is given, only members whose name, member number or identity
    number contains it (case-insensitive) are returned.
    """
    query = db.query(models.Member)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Member.full_name.ilike(pattern),
                models.Member.member_number.ilike(pattern),
                models.Member.identity_number.ilike(pattern),
            )
        )
    return query.order_by(models.Member.created_at.desc(), models.Member.id.desc()).all()


def get_member(db: Session, member_id: int) -> Optional[models.Member]:
    return db.get(models.Member, member_id)


def create_member(db: Session, member: schemas.MemberCreate) -> models.Member:
    data = member.model_dump(exclude_none=True)
    with transaction(db):
        db_member = models.Member(member_number=next_number(db, "members"), **data)
        db.add(db_member)
    db.refresh(db_member)
    logger.info("Member %s registered", db_member.member_number)
    return db_member


def update_member(
    db: Session, member_id: int, member_update: schemas.MemberUpdate
) -> models.Member:
    db_member = get_member(db, member_id)
    if db_member is None:
        raise NotFound("Member", member_id)

    with transaction(db):
        _update_fields(db_member, member_update.model_dump(exclude_unset=True))
    db.refresh(db_member)
    return db_member


def delete_member(db: Session, member_id: int) -> None:
    db_member = get_member(db, member_id)
    if db_member is not None:
        _delete(db, db_member, "Member", member_id)


# Books


def list_books(db: Session, search: Optional[str] = None) -> List[models.Book]:
    query = db.query(models.Book)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Book.title.ilike(pattern),
                models.Book.author.ilike(pattern),
                models.Book.publisher.ilike(pattern),
            )
        )
    return query.order_by(models.Book.created_at.desc(), models.Book.id.desc()).all()


def get_book(db: Session, book_id: int) -> Optional[models.Book]:
    return db.get(models.Book, book_id)


def create_book(db: Session, book: schemas.BookCreate) -> models.Book:
    """
    Catalog a new title.

    Every copy starts on the shelf, so available_quantity = quantity.
    """
    data = book.model_dump(exclude_none=True)
    with transaction(db):
        db_book = models.Book(
            book_number=next_number(db, "books"),
            available_quantity=book.quantity,
            **data,
        )
        db.add(db_book)
    db.refresh(db_book)
    logger.info("Book %s catalogued with %s copies", db_book.book_number, db_book.quantity)
    return db_book


def update_book(
    db: Session, book_id: int, book_update: schemas.BookUpdate
) -> models.Book:
    """
    Partially update a book.

    Changing quantity leaves available_quantity as it is; librarians
    reconcile the two by hand.
    """
    db_book = get_book(db, book_id)
    if db_book is None:
        raise NotFound("Book", book_id)

    with transaction(db):
        _update_fields(db_book, book_update.model_dump(exclude_unset=True))
    db.refresh(db_book)
    return db_book


def delete_book(db: Session, book_id: int) -> None:
    db_book = get_book(db, book_id)
    if db_book is not None:
        _delete(db, db_book, "Book", book_id)


# Reports


def list_reports(db: Session) -> List[models.Report]:
    return (
        db.query(models.Report)
        .order_by(models.Report.created_at.desc(), models.Report.id.desc())
        .all()
    )


def create_report(db: Session, report: schemas.ReportCreate) -> models.Report:
    with transaction(db):
        db_report = models.Report(**report.model_dump())
        db.add(db_report)
    db.refresh(db_report)
    logger.info("Report %s requested (%s)", db_report.id, db_report.report_type)
    return db_report


def delete_report(db: Session, report_id: int) -> None:
    db_report = db.get(models.Report, report_id)
    if db_report is not None:
        with transaction(db):
            db.delete(db_report)


# Dashboard


def _count(db: Session, column, *criteria) -> int:
    return db.query(func.count(column)).filter(*criteria).scalar()


def dashboard_stats(db: Session) -> dict:
    """
    Summary counts for the dashboard.

    total_books counts catalogued titles, not physical copies.
    """
    return {
        "active_loans": _count(
            db, models.Loan.id, models.Loan.status == models.LOAN_ACTIVE
        ),
        "completed_loans": _count(
            db, models.Loan.id, models.Loan.status == models.LOAN_RETURNED
        ),
        "total_books": _count(db, models.Book.id),
        "total_members": _count(db, models.Member.id),
    }
