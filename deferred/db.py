"""Shared DB engine helper."""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from deferred.utils.env_vars import get_str_env


def get_database_url(db_name: str | None = None) -> str:
    url = get_str_env("DATABASE_URL")
    if url is not None and db_name is None:
        return url
    host = os.environ.get("DB_HOST", "localhost")
    port = os.environ.get("DB_PORT", "5432")
    user = os.environ.get("DB_USER", "postgres")
    password = os.environ.get("DB_PASSWORD", "")
    name = db_name or os.environ.get("DB_NAME", "deferred_dev")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


def get_engine(db_name: str | None = None) -> Engine:
    return create_engine(get_database_url(db_name))
