import logging
from functools import wraps
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..database import begin_write
from .events import DomainEvent, EventSink
from .results import Err, ErrorKind, Result

logger = logging.getLogger(__name__)


def atomic(on_conflict: ErrorKind):
    """Run a mutating team operation as one transaction.

    The wrapped function receives ``(db, events, *args)`` and returns a Result.
    ``Ok`` commits and then hands the queued events to ``sink``; ``Err`` rolls
    back and publishes nothing. A sink failure is logged and the Ok stands.
    A uniqueness violation raised by the store
    means a concurrent commit won, and is reported as ``on_conflict``.
    """

    def decorator(fn):
        @wraps(fn)
        def wrapper(db: Session, *args, sink: Optional[EventSink] = None, **kwargs) -> Result:
            events: List[DomainEvent] = []
            try:
                begin_write(db)
                result = fn(db, events, *args, **kwargs)
                if isinstance(result, Err):
                    db.rollback()
                    logger.info("%s rejected: %s (%s)", fn.__name__, result.kind.value, result.message)
                    return result
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                logger.warning("%s lost a concurrent commit: %s", fn.__name__, exc.orig)
                return Err(on_conflict)
            except Exception:
                db.rollback()
                raise

            logger.info("%s committed", fn.__name__)
            if sink is not None and events:
                # Already committed; a failed fan-out is logged, not raised
                try:
                    sink.publish(events)
                except Exception:
                    db.rollback()
                    logger.exception("%s: publishing %s events failed", fn.__name__, len(events))
            return result

        return wrapper

    return decorator
