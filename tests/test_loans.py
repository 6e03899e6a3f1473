from library_service import loans, models, schemas, sequences, storage
from library_service.database import Base, make_engine
from library_service.errors import AlreadyReturned, InventoryUnavailable, NotFound

import random
import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker


SQLALCHEMY_DATABASE_URL = "sqlite:///./test_loans.db"
engine = make_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2024, 1, 3, 9, 30)


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def member_id(db):
    member = storage.create_member(
        db,
        schemas.MemberCreate(
            identity_number="3171010101900001",
            identity_type="KTP",
            full_name="Dewi Lestari",
        ),
    )
    return member.id


def make_book(db, quantity=1):
    book = storage.create_book(
        db,
        schemas.BookCreate(
            category="Umum",
            title="Supernova",
            type="Novel",
            author="Dee",
            publisher="Truedee Books",
            publish_year=2001,
            quantity=quantity,
        ),
    )
    return book.id


def available(book_id):
    session = TestingSessionLocal()
    try:
        return session.get(models.Book, book_id).available_quantity
    finally:
        session.close()


def active_loan_count(book_id):
    session = TestingSessionLocal()
    try:
        return (
            session.query(models.Loan)
            .filter(
                models.Loan.book_id == book_id,
                models.Loan.status == models.LOAN_ACTIVE,
            )
            .count()
        )
    finally:
        session.close()


# Fines


@pytest.mark.parametrize(
    "returned_at, expected",
    [
        (datetime(2024, 1, 9), 0),
        (datetime(2024, 1, 10), 0),
        (datetime(2024, 1, 10, 0, 0, 1), 1000),
        (datetime(2024, 1, 11), 1000),
        (datetime(2024, 1, 11, 0, 0, 1), 2000),
        (datetime(2024, 1, 17), 7000),
    ],
)
def test_calculate_fine(returned_at, expected):
    """
    Every started day past the due date costs Rp 1,000.
    """
    fine = loans.calculate_fine(datetime(2024, 1, 10), returned_at)
    assert fine == Decimal(expected)
    assert fine.as_tuple().exponent == -2


def test_calculate_fine_steps_by_whole_days():
    due = datetime(2024, 1, 10)
    previous = Decimal("0")
    for hours in range(0, 24 * 20 + 1, 3):
        fine = loans.calculate_fine(due, due + timedelta(hours=hours))
        assert fine >= previous
        assert fine % 1000 == 0
        assert fine == 1000 * -(-hours // 24)
        previous = fine


# Creation


def test_create_loan_takes_one_copy(db, member_id):
    book_id = make_book(db, quantity=2)

    loan = loans.create_loan(db, member_id, book_id, now=T0)

    assert loan.status == models.LOAN_ACTIVE
    assert loan.loan_date == T0
    assert loan.due_date == T0 + timedelta(days=7)
    assert loan.return_date is None
    assert loan.fine == 0
    assert available(book_id) == 1


def test_create_loan_numbers_are_sequential(db, member_id):
    book_id = make_book(db, quantity=3)

    numbers = [loans.create_loan(db, member_id, book_id).loan_number for _ in range(3)]

    assert numbers == ["1", "2", "3"]


def test_create_loan_without_copies_changes_nothing(db, member_id):
    book_id = make_book(db, quantity=1)
    loans.create_loan(db, member_id, book_id)

    with pytest.raises(InventoryUnavailable):
        loans.create_loan(db, member_id, book_id)

    assert available(book_id) == 0
    assert len(loans.list_loans(db)) == 1


def test_create_loan_unknown_member(db):
    book_id = make_book(db, quantity=1)

    with pytest.raises(NotFound):
        loans.create_loan(db, 4242, book_id)

    assert available(book_id) == 1
    assert loans.list_loans(db) == []


def test_create_loan_unknown_book(db, member_id):
    with pytest.raises(InventoryUnavailable):
        loans.create_loan(db, member_id, 4242)


def test_member_removed_during_loan_creation(db, member_id, monkeypatch):
    """
    The member disappears after the existence check but before the loan is
    written: the foreign key rejects the loan and nothing is changed.
    """
    book_id = make_book(db, quantity=1)
    numbering = loans.next_number

    def remove_member_then_number(session, name):
        session.execute(delete(models.Member).where(models.Member.id == member_id))
        return numbering(session, name)

    monkeypatch.setattr(loans, "next_number", remove_member_then_number)

    with pytest.raises(NotFound) as excinfo:
        loans.create_loan(db, member_id, book_id)

    assert excinfo.value.entity == "Member"
    assert available(book_id) == 1
    assert loans.list_loans(db) == []
    assert storage.get_member(db, member_id) is not None


# Sequences


def test_sequences_seeded_with_tables(db):
    rows = db.execute(select(models.Sequence.name, models.Sequence.value)).all()

    assert sorted(tuple(row) for row in rows) == [("books", 0), ("loans", 0), ("members", 0)]


def test_next_number_unknown_sequence(db):
    with pytest.raises(LookupError):
        sequences.next_number(db, "reports")
    db.rollback()


def test_stale_reader_cannot_take_last_copy(db, member_id):
    """
    Two sessions both see one copy; only the first loan goes through.
    """
    book_id = make_book(db, quantity=1)
    other = TestingSessionLocal()
    try:
        assert db.get(models.Book, book_id).available_quantity == 1
        assert other.get(models.Book, book_id).available_quantity == 1

        loans.create_loan(db, member_id, book_id)
        with pytest.raises(InventoryUnavailable):
            loans.create_loan(other, member_id, book_id)
    finally:
        other.close()

    assert available(book_id) == 0
    assert active_loan_count(book_id) == 1


def test_concurrent_loans_for_last_copy(db, member_id):
    """
    Two threads race for a single copy: exactly one loan is created.
    """
    book_id = make_book(db, quantity=1)
    barrier = threading.Barrier(2)
    outcomes = []
    outcomes_lock = threading.Lock()

    def borrow():
        session = TestingSessionLocal()
        try:
            barrier.wait()
            loans.create_loan(session, member_id, book_id)
            outcome = "created"
        except InventoryUnavailable:
            outcome = "unavailable"
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=borrow) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes) == ["created", "unavailable"]
    assert available(book_id) == 0
    assert active_loan_count(book_id) == 1


# Return


def test_return_on_time_has_no_fine(db, member_id):
    book_id = make_book(db)
    loan = loans.create_loan(db, member_id, book_id, now=T0)

    returned = loans.return_book(db, loan.id, now=T0 + timedelta(days=7))

    assert returned.status == models.LOAN_RETURNED
    assert returned.return_date == T0 + timedelta(days=7)
    assert returned.fine == 0
    assert available(book_id) == 1


def test_return_twice_restores_copy_once(db, member_id):
    book_id = make_book(db, quantity=1)
    loan = loans.create_loan(db, member_id, book_id, now=T0)
    first = loans.return_book(db, loan.id, now=T0 + timedelta(days=8))
    assert first.fine == Decimal("1000")

    with pytest.raises(AlreadyReturned):
        loans.return_book(db, loan.id, now=T0 + timedelta(days=30))

    assert available(book_id) == 1
    assert loans.get_loan(db, loan.id).fine == Decimal("1000")


def test_stale_double_return_restores_copy_once(db, member_id):
    """
    A second session still holding the loan as active cannot return it again.
    """
    book_id = make_book(db, quantity=1)
    loan_id = loans.create_loan(db, member_id, book_id).id
    other = TestingSessionLocal()
    try:
        assert other.get(models.Loan, loan_id).status == models.LOAN_ACTIVE
        loans.return_book(db, loan_id)
        with pytest.raises(AlreadyReturned):
            loans.return_book(other, loan_id)
    finally:
        other.close()

    assert available(book_id) == 1


def test_return_unknown_loan(db):
    with pytest.raises(NotFound):
        loans.return_book(db, 4242)


# Deletion


def test_delete_active_loan_restores_copy(db, member_id):
    book_id = make_book(db, quantity=1)
    loan_id = loans.create_loan(db, member_id, book_id).id

    assert loans.delete_loan(db, loan_id) is True

    assert available(book_id) == 1
    assert loans.get_loan(db, loan_id) is None


def test_delete_returned_loan_keeps_inventory(db, member_id):
    book_id = make_book(db, quantity=1)
    loan_id = loans.create_loan(db, member_id, book_id).id
    loans.return_book(db, loan_id)

    assert loans.delete_loan(db, loan_id) is False

    assert available(book_id) == 1
    assert loans.get_loan(db, loan_id) is None


def test_delete_missing_loan_is_noop(db):
    assert loans.delete_loan(db, 4242) is False


def test_return_then_stale_delete_restores_copy_once(db, member_id):
    """
    A delete working from a stale "active" view of a loan that was just
    returned removes the row without giving the copy back a second time.
    """
    book_id = make_book(db, quantity=1)
    loan_id = loans.create_loan(db, member_id, book_id).id
    other = TestingSessionLocal()
    try:
        assert other.get(models.Loan, loan_id).status == models.LOAN_ACTIVE
        loans.return_book(db, loan_id)
        assert loans.delete_loan(other, loan_id) is False
    finally:
        other.close()

    assert available(book_id) == 1
    assert loans.get_loan(db, loan_id) is None


# Views


def test_overdue_view_does_not_rewrite_status(db, member_id):
    book_id = make_book(db, quantity=2)
    late = loans.create_loan(db, member_id, book_id, now=T0)
    current = loans.create_loan(db, member_id, book_id, now=T0 + timedelta(days=5))
    now = T0 + timedelta(days=8)

    overdue = loans.list_overdue_loans(db, now=now)

    assert [loan.id for loan in overdue] == [late.id]
    assert overdue[0].status == models.LOAN_ACTIVE
    assert overdue[0].is_overdue(now)
    assert not loans.get_loan(db, current.id).is_overdue(now)
    assert {loan.id for loan in loans.list_active_loans(db)} == {late.id, current.id}


def test_list_loans_joins_member_and_book(db, member_id):
    book_id = make_book(db, quantity=2)
    first = loans.create_loan(db, member_id, book_id, now=T0)
    second = loans.create_loan(db, member_id, book_id, now=T0 + timedelta(hours=1))

    listed = loans.list_loans(db)

    assert [loan.id for loan in listed] == [second.id, first.id]
    assert listed[0].member.full_name == "Dewi Lestari"
    assert listed[0].book.title == "Supernova"


def test_returned_loan_not_overdue(db, member_id):
    book_id = make_book(db)
    loan = loans.create_loan(db, member_id, book_id, now=T0)
    loans.return_book(db, loan.id, now=T0 + timedelta(days=20))

    assert loans.list_overdue_loans(db, now=T0 + timedelta(days=30)) == []
    assert loans.get_loan(db, loan.id).display_status == models.LOAN_RETURNED


# Invariants


def test_inventory_conservation_over_random_operations(db, member_id):
    """
    available_quantity always equals quantity minus active loans, whatever
    mix of create, return and delete is applied.
    """
    quantity = 3
    book_id = make_book(db, quantity=quantity)
    rng = random.Random(20240110)
    loan_ids = []

    for _ in range(60):
        action = rng.choice(["create", "return", "delete"])
        try:
            if action == "create":
                loan_ids.append(loans.create_loan(db, member_id, book_id).id)
            elif action == "return" and loan_ids:
                loans.return_book(db, rng.choice(loan_ids))
            elif action == "delete" and loan_ids:
                loan_id = rng.choice(loan_ids)
                loans.delete_loan(db, loan_id)
                loan_ids.remove(loan_id)
        except (InventoryUnavailable, AlreadyReturned):
            pass

        current = available(book_id)
        assert 0 <= current <= quantity
        assert current == quantity - active_loan_count(book_id)


def test_single_copy_scenario(db, member_id):
    """
    Lend the only copy, refuse a second loan, return 10 days late.
    """
    book_id = make_book(db, quantity=1)

    loan = loans.create_loan(db, member_id, book_id, now=T0)
    assert available(book_id) == 0
    assert loan.status == models.LOAN_ACTIVE
    assert loan.due_date == loan.loan_date + timedelta(days=7)

    with pytest.raises(InventoryUnavailable):
        loans.create_loan(db, member_id, book_id, now=T0 + timedelta(days=1))

    returned = loans.return_book(db, loan.id, now=loan.due_date + timedelta(days=10))
    assert returned.fine == Decimal("10000")
    assert returned.status == models.LOAN_RETURNED
    assert available(book_id) == 1


def test_dashboard_counts(db, member_id):
    book_id = make_book(db, quantity=4)
    make_book(db, quantity=1)
    returned = loans.create_loan(db, member_id, book_id)
    loans.create_loan(db, member_id, book_id)
    loans.return_book(db, returned.id)

    assert storage.dashboard_stats(db) == {
        "active_loans": 1,
        "completed_loans": 1,
        "total_books": 2,
        "total_members": 1,
    }
