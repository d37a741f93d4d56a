import logging
import traceback
from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from tenancy import models
from tenancy.exceptions import SweepError
from tenancy.settings import app_settings

logger = logging.getLogger(__name__)

database_url = app_settings.test_database_url if app_settings.test_database_url else app_settings.database_url

connect_args: dict[str, Any] = {}
if database_url.startswith("sqlite"):
    # FastAPI runs synchronous dependencies in a thread pool.
    connect_args["check_same_thread"] = False

# https://docs.sqlalchemy.org/en/20/orm/session_basics.html#using-a-sessionmaker
engine = create_engine(database_url, connect_args=connect_args)
# https://docs.sqlalchemy.org/en/20/orm/session_api.html#sqlalchemy.orm.Session.__init__
SessionLocal = sessionmaker(expire_on_commit=False, bind=engine)


@contextmanager
def rollback_on_error(session: Session) -> Generator[None, None, None]:
    """
    Call ``session.rollback()`` and re-raise the exception.
    """
    try:
        yield
    except Exception:
        session.rollback()
        raise


@contextmanager
def handle_skipped_record(session: Session, msg: str, **data: Any) -> Generator[None, None, None]:
    """
    Call ``session.rollback()`` and commit an ``EventLog`` entry, so that a scheduled command can continue with the
    next record.

    :class:`~tenancy.exceptions.SweepError` is logged with its own category and data. Any other
    :class:`~tenancy.exceptions.TenancyError` is logged with the data passed to this function.
    """
    try:
        yield
    except SweepError as e:
        session.rollback()
        logger.warning("%s: %s", msg, e.message)
        models.EventLog.create(
            session,
            category=e.category,
            message=f"{msg}: {e.message}",
            data=e.data | data,
            traceback=traceback.format_exc(),
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.exception("%s", msg)
        models.EventLog.create(
            session,
            category=type(e).__name__,
            message=f"{msg}: {e}",
            data=data,
            traceback=traceback.format_exc(),
        )
        session.commit()


# This is a FastAPI dependency.
def get_db() -> Generator[Session, None, None]:
    """
    Get a SQLAlchemy session.
    """
    with SessionLocal() as session:
        yield session
