from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import load_settings
from errors import ConflictError, DuplicateKeyError, StoreError

DB_URL = load_settings().database_url
connect_args = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}

engine = create_engine(DB_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run a block as one transaction.

    Commits when the block finishes, otherwise rolls back everything it wrote
    and re-raises. Database failures are translated into the domain error
    taxonomy; domain errors raised inside the block pass through unchanged.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError("batch was modified concurrently, retry the operation") from exc
    except IntegrityError as exc:
        db.rollback()
        message = str(exc.orig) if exc.orig is not None else str(exc)
        if "unique" in message.lower() and "batch_id" in message.lower():
            raise DuplicateKeyError("batch_id already exists") from exc
        raise StoreError(f"constraint violation: {message}") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(str(exc)) from exc
    except Exception:
        db.rollback()
        raise
