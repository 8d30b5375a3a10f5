"""Database configuration and initialization."""
import logging
import uuid
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from cafm.exceptions import CafmError, PersistenceError, StaleWrite

logger = logging.getLogger(__name__)

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def build_engine(database_uri, echo=False):
    """Create an engine; SQLite gets a single shared connection and no pool sizing."""
    if database_uri.startswith('sqlite'):
        return create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def create_session_factory(bind, default_tenant_id=None, application_name=None):
    """
    Build a sessionmaker with the tenant, audit and history hooks installed.

    Every session produced by the factory enforces tenant isolation on reads
    and runs the write pipeline on flush.
    """
    from cafm.services.hooks import install_hooks

    info = {}
    if default_tenant_id:
        info['default_tenant_id'] = uuid.UUID(str(default_tenant_id))
    if application_name:
        info['application_name'] = application_name

    factory = sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False,
        info=info,
    )
    install_hooks(factory)
    return factory


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    engine = build_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False),
    )
    db_session = scoped_session(
        create_session_factory(
            engine,
            default_tenant_id=app.config.get('DEFAULT_TENANT_ID'),
            application_name=app.config.get('APPLICATION_NAME'),
        )
    )

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        from cafm.services.tenant_context import clear_active_tenant

        if exception:
            db_session.rollback()
        clear_active_tenant(db_session)
        db_session.remove()


def create_all():
    """Create every mapped table on the configured engine."""
    import cafm.models  # noqa: F401  (register mappers)

    Base.metadata.create_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


@contextmanager
def translate_errors(session):
    """
    Roll back and re-raise ORM failures as application errors.

    StaleDataError (optimistic lock) becomes StaleWrite, other SQLAlchemy
    errors become PersistenceError. Application errors pass through after
    the rollback.
    """
    try:
        yield
    except StaleDataError as e:
        session.rollback()
        logger.warning(f"[TENANT] Stale write rejected: {e}")
        raise StaleWrite() from e
    except CafmError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Persistence failure, unit of work rolled back: {e}")
        raise PersistenceError() from e
