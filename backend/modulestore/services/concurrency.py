# Overview: Transaction and row-locking helpers shared by every mutating service call.

from __future__ import annotations

from contextlib import contextmanager

from ..extensions import db

_DEPTH_KEY = "modulestore.atomic_depth"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    Run the enclosed block as one transaction.

    The outermost block commits on success; on any exception the session is
    rolled back and the original exception propagates unchanged. Nested
    blocks join the outermost transaction, so a service that calls another
    service commits once.
    """
    session = db.session
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except Exception:
        if depth == 0:
            session.rollback()
        raise
    finally:
        session.info[_DEPTH_KEY] = depth
