from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rental_hub.models.rental_models import SequenceCounter


LOGGER = logging.getLogger("rental_hub.sequences")

ORDER_SEQUENCE = "order"
INVOICE_SEQUENCE = "invoice"
RETURN_REQUEST_SEQUENCE = "return_request"


def _bump(db: Session, name: str) -> int:
    # Row-level UPDATE keeps concurrent callers from drawing the same value.
    result = db.execute(
        update(SequenceCounter)
        .where(SequenceCounter.Name == name)
        .values(Value=SequenceCounter.Value + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def next_sequence_value(db: Session, name: str) -> int:
    if _bump(db, name):
        return int(db.execute(select(SequenceCounter.Value).where(SequenceCounter.Name == name)).scalar_one())

    try:
        with db.begin_nested():
            db.add(SequenceCounter(Name=name, Value=1))
        return 1
    except IntegrityError:
        # Another caller created the row first; its insert counts as value 1.
        LOGGER.info("Sequence row created concurrently name=%s; retrying increment", name)

    if not _bump(db, name):
        raise RuntimeError(f"Sequence counter {name} could not be created or incremented.")
    return int(db.execute(select(SequenceCounter.Value).where(SequenceCounter.Name == name)).scalar_one())


def format_sequence_number(prefix: str, value: int, width: int = 5) -> str:
    return f"{prefix.upper()}-{int(value):0{width}d}"


def generate_number(db: Session, name: str, prefix: str) -> str:
    return format_sequence_number(prefix, next_sequence_value(db, name))
