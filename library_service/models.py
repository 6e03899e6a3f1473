from datetime import datetime
from decimal import Decimal

from library_service.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
)


LOAN_ACTIVE = "active"
LOAN_RETURNED = "returned"
LOAN_OVERDUE = "overdue"

REPORT_PENDING = "pending"

SEQUENCE_NAMES = ("members", "books", "loans")


class Member(Base):
    """
    Member model representing registered library patrons.

    Relationships:
    - One member can have many loans (one-to-many)

    member_number is the human-readable number shown to librarians. It comes
    from the "members" sequence and is never reused, even after deletion.
    """

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, index=True)
    member_number = Column(String, unique=True, nullable=False, index=True)
    identity_number = Column(String, nullable=False)
    identity_type = Column(String, nullable=False)
    full_name = Column(String, nullable=False, index=True)
    birth_date = Column(Date, nullable=True)
    class_name = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    phone = Column(String, nullable=True)
    registration_date = Column(DateTime, default=datetime.now, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    loans = relationship("Loan", back_populates="member", passive_deletes="all")


class Book(Base):
    """
    Book model representing a catalog title and its copies.

    Inventory:
    - quantity is the number of copies the library owns
    - available_quantity is the number of copies not currently on loan

    available_quantity is only ever changed by the loan engine (see
    library_service.inventory). Editing quantity does not touch it.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    book_number = Column(String, unique=True, nullable=False, index=True)
    category = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    author = Column(String, nullable=False, index=True)
    publisher = Column(String, nullable=False)
    publish_year = Column(Integer, nullable=False)
    entry_date = Column(DateTime, default=datetime.now, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    available_quantity = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    loans = relationship("Loan", back_populates="book", passive_deletes="all")


class Loan(Base):
    """
    Loan model binding one member to one book for a fixed period.

    Lifecycle:
    - Created as "active" with due_date = loan_date + 7 days
    - Moves to "returned" exactly once, recording return_date and fine
    - May be deleted instead; an active loan gives its copy back first

    "Overdue" is never stored. display_status derives it from status and
    due_date at read time.
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, index=True)
    loan_number = Column(String, unique=True, nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    loan_date = Column(DateTime, default=datetime.now, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    fine = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    status = Column(String, default=LOAN_ACTIVE, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    member = relationship("Member", back_populates="loans")
    book = relationship("Book", back_populates="loans")

    def is_overdue(self, now=None):
        now = now or datetime.now()
        return self.status == LOAN_ACTIVE and now > self.due_date

    @property
    def display_status(self):
        if self.is_overdue():
            return LOAN_OVERDUE
        return self.status


class Report(Base):
    """Report-generation request and its status. Nothing is rendered."""

    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    report_type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    status = Column(String, default=REPORT_PENDING, nullable=False)
    file_path = Column(String, nullable=True)
    generated_at = Column(DateTime, default=datetime.now, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class Sequence(Base):
    """
    Per-entity counter for display numbers.

    One row per sequence name ("members", "books", "loans"), bumped with a
    single UPDATE so two concurrent inserts never receive the same number.
    """

    __tablename__ = "sequences"

    name = Column(String, primary_key=True)
    value = Column(Integer, default=0, nullable=False)


@event.listens_for(Sequence.__table__, "after_create")
def _seed_sequences(target, connection, **kw):
    connection.execute(
        target.insert(), [{"name": name, "value": 0} for name in SEQUENCE_NAMES]
    )
