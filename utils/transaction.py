import logging
from contextlib import contextmanager
from typing import Optional
from sqlalchemy.orm import Session
from utils.auth import Actor
from utils.errors import CoreError, DocumentNumberCollision

@contextmanager
def unit_of_work(db: Session, operation: str, actor: Optional[Actor] = None, **context):
    '''
    One atomic unit per service operation: commit when the block finishes,
    otherwise roll back everything written in it, log and re-raise.

    with unit_of_work(db, "sale.add_payment", actor, sale_id=sale_id):
        ...
    '''
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        log_failure(operation, e, actor, **context)
        raise

def log_failure(operation: str, error: Exception, actor: Optional[Actor] = None, **context):
    # Formatting is deferred to the logging module, which reports its own
    # failures through Handler.handleError instead of raising.
    actor_id = actor.id if actor else None
    if isinstance(error, (CoreError, DocumentNumberCollision)):
        logging.warning("%s failed: %s (%s) actor=%s context=%s", operation, error, type(error).__name__, actor_id, context)
    else:
        logging.error("%s failed: %r actor=%s context=%s", operation, error, actor_id, context, exc_info=error)
