from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session


def compare_and_swap_status(
    db: Session,
    model,
    record_id: str,
    expected: Iterable[Any],
    values: dict,
    *conditions,
) -> bool:
    """
    Conditionally move ``record_id`` out of one of the ``expected`` statuses.

    Runs a single ``UPDATE ... WHERE id = :id AND status IN (:expected)``
    so concurrent writers cannot both win. Returns True when this caller
    performed the transition. Does not commit.
    """
    db.flush()
    stmt = (
        update(model)
        .where(model.id == record_id, model.status.in_(list(expected)), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def reload(db: Session, model, record_id: str) -> Optional[Any]:
    """Fetch a row ignoring whatever stale copy the session holds."""
    return db.get(model, record_id, populate_existing=True)
