"""FastAPI dependencies for database access."""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from deferred.db import get_engine


@lru_cache(maxsize=1)
def get_shared_engine() -> Engine:
    return get_engine()


def get_db() -> Generator[Session, None, None]:
    with Session(get_shared_engine()) as session:
        yield session
