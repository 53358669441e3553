import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Type
from urllib.parse import quote_plus

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from invex.config.invex_config import InvexConfig

# Configure logging
logger = logging.getLogger(__name__)

Base = declarative_base()


def get_base() -> Type:
    """
    Get the base class for declarative models
    """
    return Base


class Database:
    """
    Database connection manager for invex

    Handles SQLite (file or in-memory) and PostgreSQL connections with
    connection pooling. Every service operation opens its own session.
    """

    def __init__(self, config: Optional[InvexConfig] = None, max_retries: int = 3):
        """
        Initialize database connection

        Args:
            config: InvexConfig instance. Uses the shared configuration if None.
            max_retries: Connection attempts before giving up
        """
        self.config = config or InvexConfig()
        self.max_retries = max_retries
        self.engine: Optional[Engine] = None
        self.Session = None
        self._initialize()

    def _initialize(self) -> None:
        db_config = self.config.get('database', {})
        db_type = db_config.get('type', 'sqlite')

        last_error = None
        for attempt in range(self.max_retries):
            try:
                if db_type == 'sqlite':
                    self.engine = self._create_sqlite_engine(db_config)
                elif db_type in ['postgresql', 'postgres']:
                    self.engine = self._create_postgres_engine(db_config)
                else:
                    raise ValueError(f"Unsupported database type: {db_type}")

                # Test connection
                with self.engine.connect() as conn:
                    conn.execute(text("SELECT 1"))

                self.Session = sessionmaker(
                    bind=self.engine,
                    expire_on_commit=False,
                    autocommit=False,
                    autoflush=False
                )
                logger.info(f"Database initialized ({db_type})")
                return
            except SQLAlchemyError as e:
                last_error = e
                logger.warning(f"Database connection attempt {attempt + 1} failed: {str(e)}")
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)

        logger.error(f"Failed to initialize database after {self.max_retries} attempts")
        raise RuntimeError(f"Failed to initialize database: {last_error}")

    def _create_sqlite_engine(self, db_config: dict) -> Engine:
        db_path = str(db_config.get('path', 'invex.db'))

        if db_path == ':memory:':
            engine = create_engine(
                'sqlite://',
                poolclass=StaticPool,
                connect_args={'check_same_thread': False}
            )
        else:
            path = Path(db_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f'sqlite:///{path}',
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,
                connect_args={
                    'timeout': 30,
                    'check_same_thread': False
                }
            )

        # Enable foreign key support
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def _create_postgres_engine(self, db_config: dict) -> Engine:
        postgres_config = db_config.get('postgres', db_config.get('postgresql', {}))
        host = postgres_config.get('host', 'localhost')
        port = postgres_config.get('port', 5432)
        database = postgres_config.get('database', 'invex')
        user = quote_plus(postgres_config.get('user', 'postgres'))
        password = quote_plus(postgres_config.get('password', '') or '')
        sslmode = postgres_config.get('sslmode', 'disable' if host in ['localhost', '127.0.0.1'] else 'require')

        return create_engine(
            f'postgresql://{user}:{password}@{host}:{port}/{database}?sslmode={sslmode}',
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=1800
        )

    def session(self) -> Session:
        """Open a new session"""
        return self.Session()

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """
        Session scope that commits on success and rolls back on any error
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Transaction rolled back: {type(e).__name__}: {str(e)}")
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        # Models must be imported so they register on the metadata
        from invex.db import models  # noqa: F401
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def drop_tables(self) -> None:
        from invex.db import models  # noqa: F401
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
