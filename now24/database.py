"""Database configuration and initialization."""
from sqlalchemy import create_engine, event, BigInteger, Integer, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# SQLite only autoincrements INTEGER primary keys (test database)
BigIntPK = BigInteger().with_variant(Integer(), 'sqlite')
JSONType = JSON().with_variant(JSONB(), 'postgresql')

# Global session and engine
engine = None
db_session = None


def _engine_options(app, database_uri):
    options = {'echo': app.config.get('SQLALCHEMY_ECHO', False)}
    if database_uri.startswith('sqlite'):
        options['connect_args'] = {'check_same_thread': False}
        if _is_memory_sqlite(database_uri):
            options['poolclass'] = StaticPool
        else:
            # Writers wait for the file lock instead of failing
            options['connect_args']['timeout'] = app.config.get('SQLITE_BUSY_TIMEOUT', 30)
    else:
        options.update(
            pool_pre_ping=True,  # Enable connection health checks
            pool_size=app.config.get('SQLALCHEMY_POOL_SIZE', 10),
            max_overflow=app.config.get('SQLALCHEMY_MAX_OVERFLOW', 20),
        )
    return options


def _is_memory_sqlite(database_uri):
    return database_uri in ('sqlite://', 'sqlite:///:memory:')


def _serialize_sqlite_writers(engine):
    """
    Start every transaction with BEGIN IMMEDIATE on file-backed SQLite.

    SQLite ignores SELECT ... FOR UPDATE, so this takes the write lock up
    front and concurrent checkouts run one after another, like the row
    locks do on Postgres.
    """
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(database_uri, **_engine_options(app, database_uri))
    if database_uri.startswith('sqlite') and not _is_memory_sqlite(database_uri):
        _serialize_sqlite_writers(engine)

    db_session = scoped_session(
        sessionmaker(autocommit=False, autoflush=False, bind=engine)
    )

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_tables():
    """Create every table registered on Base (dev and tests)."""
    import now24.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_tables():
    import now24.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def enum_values(enum_cls):
    """Persist enum members by value (lowercase wire names)."""
    return [member.value for member in enum_cls]
