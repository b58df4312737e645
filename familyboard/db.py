import logging

from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from . import config

logger = logging.getLogger(__name__)


def build_engine(url: str = config.DATABASE_URL):
    is_sqlite = url.startswith("sqlite")
    engine = create_engine(url, connect_args={"check_same_thread": False} if is_sqlite else {})
    if is_sqlite:
        # ledger and assignment rows reference children by id
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine()


def get_session():
    with Session(engine) as session:
        yield session


def init_db():
    from . import models  # noqa: F401  registers the tables

    SQLModel.metadata.create_all(engine)
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
