from sqlalchemy import select, update
from sqlalchemy.orm import Session

from library_service.models import Sequence


def next_number(db: Session, name: str) -> str:
    """
    Return the next display number for the named sequence.

    The rows are seeded when the sequences table is created, so the bump is
    always a single UPDATE inside the caller's transaction, and the row stays
    locked until that transaction commits or rolls back. Numbers are unique
    and increasing but may have gaps (rolled-back inserts and deleted rows
    are never renumbered).

    Raises:
        LookupError: no sequence with this name exists
    """
    result = db.execute(
        update(Sequence)
        .where(Sequence.name == name)
        .values(value=Sequence.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise LookupError(f"Unknown sequence {name!r}")

    value = db.execute(
        select(Sequence.value).where(Sequence.name == name)
    ).scalar_one()
    return str(value)
