import functools

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import settings
from .errors import ConflictError, DependencyError, EssError

logger = structlog.get_logger("ess.db")

_IS_SQLITE = settings.DATABASE_URL.startswith("sqlite")

connect_args = {}
engine_kwargs = {}
if _IS_SQLITE:
    connect_args = {"check_same_thread": False}
else:
    engine_kwargs["isolation_level"] = "SERIALIZABLE"
    engine_kwargs["pool_pre_ping"] = True

engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=connect_args, **engine_kwargs)


def install_sqlite_pragmas(target_engine) -> None:
    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself so SAVEPOINT nests correctly
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(target_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


if _IS_SQLITE:
    install_sqlite_pragmas(engine)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None) -> None:
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def is_serialization_failure(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == "40001":
        return True
    text = str(orig or exc).lower()
    return "could not serialize" in text or "database is locked" in text


def transactional(fn):
    """Run a service function as one unit of work.

    Commits on success and rolls back on any error. Serialization failures
    are retried up to ``TX_RETRIES`` times before surfacing as a conflict.
    The wrapped function must take the session as its first argument and
    must not commit on its own.
    """

    @functools.wraps(fn)
    def wrapper(db, *args, **kwargs):
        attempts = max(0, int(settings.TX_RETRIES)) + 1
        for attempt in range(1, attempts + 1):
            try:
                result = fn(db, *args, **kwargs)
                db.commit()
                return result
            except EssError:
                db.rollback()
                raise
            except IntegrityError as exc:
                db.rollback()
                logger.warning("tx_integrity_error", operation=fn.__name__, error=str(exc.orig))
                raise ConflictError("Record already exists or is referenced elsewhere") from exc
            except (OperationalError, DBAPIError) as exc:
                db.rollback()
                if is_serialization_failure(exc):
                    if attempt < attempts:
                        logger.warning("tx_retry", operation=fn.__name__, attempt=attempt)
                        continue
                    raise ConflictError("Request was modified concurrently, please retry") from exc
                logger.error("tx_dependency_error", operation=fn.__name__, error=str(exc))
                raise DependencyError("Database is unavailable, please retry") from exc
            except Exception:
                db.rollback()
                raise

    return wrapper
