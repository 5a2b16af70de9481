# Overview: Race-safe per-year document numbering (INV-<year>-<seq>, AUD-<year>-<seq>).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AuditDocument, DocumentSequence, InventoryRequest
from ..time_utils import current_year


DOCUMENT_TYPE_REQUEST = "inventory_request"
DOCUMENT_TYPE_AUDIT = "audit_document"

REQUEST_PREFIX = "INV"
AUDIT_PREFIX = "AUD"

# Number column per document type, used to seed a new year's sequence
_NUMBER_COLUMNS = {
    DOCUMENT_TYPE_REQUEST: InventoryRequest.request_number,
    DOCUMENT_TYPE_AUDIT: AuditDocument.document_number,
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, year: int, number: int, pad: int = 4) -> str:
    return f"{prefix}-{year}-{number:0{pad}d}"


def parse_sequence_suffix(document_number: str | None, prefix: str, year: int) -> int | None:
    """Return the numeric suffix of `<prefix>-<year>-<seq>`, or None when it does not parse."""
    if not document_number:
        return None
    head = f"{prefix}-{year}-"
    if not document_number.startswith(head):
        return None
    suffix = document_number[len(head):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def highest_existing_suffix(document_type: str, prefix: str, year: int) -> int:
    """Highest suffix already issued for the year (0 when none)."""
    column = _NUMBER_COLUMNS.get(document_type)
    if column is None:
        return 0
    numbers = db.session.query(column).filter(column.like(f"{prefix}-{year}-%")).all()
    suffixes = [parse_sequence_suffix(row[0], prefix, year) for row in numbers]
    return max((s for s in suffixes if s is not None), default=0)


def _current_value(document_type: str, year: int) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, year=year)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    year: int | None = None,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a type within a year.

    The UPDATE takes the row lock on (document_type, year) and holds it until
    the caller's transaction ends, so concurrent allocations serialize. The
    first allocation of a year inserts the row, seeded from the highest
    number already issued; a concurrent insert loses on the unique
    constraint and falls back to the UPDATE path.

    Must be called inside the caller's retry-wrapped operation.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not prefix:
        raise DocumentSequenceError("prefix is required")
    year = year or current_year()

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_value(document_type, year) - 1
    else:
        start = highest_existing_suffix(document_type, prefix, year) + 1
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, year=year, next_number=start + 1))
            next_num = start
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_value(document_type, year) - 1

    return format_document_number(prefix, year, next_num, pad)
