from datetime import date
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random
from config import DOCUMENT_NUMBER_RETRIES
from utils import local_datetime
from utils.errors import DocumentNumberCollision

# Wraps a whole service operation: the failed unit of work has already rolled back when this retries
retry_on_collision = retry(
    retry=retry_if_exception_type(DocumentNumberCollision),
    reraise=True,
    stop=stop_after_attempt(DOCUMENT_NUMBER_RETRIES),
    wait=wait_random(min=0, max=0.2),
)

def next_document_number(db: Session, model, column, prefix: str, curr_date: date | None = None) -> str:
    '''
    <prefix><YYYYMMDD>-<NNNN>, sequence restarts every day.
    Two writers can read the same last number, the unique constraint on the column
    catches that and the caller retries (see DocumentNumberCollision).
    '''
    day_prefix = f"{prefix}{local_datetime.yyyymmdd(curr_date)}-"
    last_number = db.query(column).filter(column.like(f"{day_prefix}%")) \
        .order_by(model.id.desc()).limit(1).scalar()

    sequence = 1
    if last_number:
        sequence = int(last_number[-4:]) + 1
    return f"{day_prefix}{sequence:04d}"

def is_unique_violation(error: IntegrityError, column) -> bool:
    '''
    True when the error is the unique constraint on this mapped column.
    SQLite reports "<table>.<column>", PostgreSQL the "<table>_<column>_key" constraint.
    '''
    table, name = column.class_.__tablename__, column.key
    message = str(error.orig)
    return f"{table}.{name}" in message or f"{table}_{name}_key" in message

def flush_numbered(db: Session, column):
    '''
    Flush right after a document number is assigned so a duplicate surfaces here
    and not at commit time. Only a clash on the number column becomes a
    DocumentNumberCollision, any other integrity error goes up unchanged.
    '''
    try:
        db.flush()
    except IntegrityError as e:
        if not is_unique_violation(e, column):
            raise
        raise DocumentNumberCollision(f"{column.class_.__name__} number already taken: {e.orig}") from e
