"""Database configuration and initialization."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None


def _engine_options(app):
    """Build engine keyword arguments for the configured backend."""
    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    options = {'echo': app.config.get('SQLALCHEMY_ECHO', False)}

    if database_uri.startswith('sqlite'):
        # Single shared connection so an in-memory database survives across sessions
        options.update(
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
        return options

    options.update(
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20,
        pool_timeout=app.config.get('DB_CONNECT_TIMEOUT', 5)
    )
    if database_uri.startswith('postgresql'):
        statement_timeout = app.config.get('DB_STATEMENT_TIMEOUT_MS', 10000)
        options['connect_args'] = {
            'connect_timeout': app.config.get('DB_CONNECT_TIMEOUT', 5),
            'options': f'-c statement_timeout={statement_timeout}'
        }
    return options


def init_db(app):
    """Initialize database connection."""
    global engine, db_session

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    engine = create_engine(database_uri, **_engine_options(app))

    if database_uri.startswith('sqlite'):
        @event.listens_for(engine, 'connect')
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

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


def create_all():
    """Create every table known to the models package."""
    import invoicing.models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop every table known to the models package."""
    import invoicing.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session
