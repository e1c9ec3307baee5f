# avatar_agent/db_connection.py
import logging
import os
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from avatar_agent.app_config import AppConfig
from avatar_agent.entities import Base


logger = logging.getLogger("avatar_agent")


class DbConnection:
    def __init__(self, config: Optional[AppConfig] = None, database_url: Optional[str] = None) -> None:
        self.config = config or AppConfig()
        self.DB_PASSWORD = self.config.DB_PASSWORD

        # !###############################################
        # !   EITHER A DATABASE_URL IN THE .ENV FILE OR
        # !   POSTGRES BUILT FROM THE DB_* VARIABLES
        # !###############################################
        self.DATABASE_URL = database_url or self.config.DATABASE_URL
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+pg8000://{self.config.DB_USER}:{self._get_db_password_lazy()}"
                f"@{self.config.DB_HOST}:{self.config.DB_PORT}/{self.config.DB_NAME}"
            )

        self.engine = self._build_engine(self.DATABASE_URL)
        self._sessionmaker = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,  # stores hand detached rows back to callers
            future=True,
        )

    # -------- GCP auth / creds --------
    def _build_creds(self):
        key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        scopes = ["https://www.googleapis.com/auth/cloud-platform"]
        if key_path and os.path.exists(key_path):
            return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
        creds, _ = google_auth_default(scopes=scopes)
        return creds

    # -------- DB password (Secret Manager) --------
    def _get_db_password_lazy(self) -> str:
        if self.DB_PASSWORD:
            return self.DB_PASSWORD
        if self.config.DB_SECRET_ID:
            client = secretmanager.SecretManagerServiceClient(credentials=self._build_creds())
            name = client.secret_version_path(self.config.PROJECT_ID, self.config.DB_SECRET_ID, "latest")
            resp = client.access_secret_version(request={"name": name})
            self.DB_PASSWORD = resp.payload.data.decode("utf-8")
            return self.DB_PASSWORD
        raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")

    def _build_engine(self, url: str):
        if url.startswith("sqlite"):
            logger.info(f"[DB] Using SQLite URL: {url}")
            # one shared connection so in-memory databases survive across sessions/threads
            return create_engine(
                url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        logger.info(f"[DB] Connecting to Postgres host={self.config.DB_HOST} db={self.config.DB_NAME}")
        # pg8000 supports 'timeout' in seconds
        return create_engine(
            url,
            future=True,
            pool_pre_ping=True,
            connect_args={"timeout": 10},
        )

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self) -> Callable[[], Session]:
        def _factory() -> Session:
            return self._sessionmaker()

        return _factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        One unit of work spanning several stores: commit on success,
        rollback on any exception.
        """
        session = self._sessionmaker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


@contextmanager
def session_scope(session_factory: Callable[[], Session], session: Optional[Session] = None) -> Iterator[Session]:
    """
    Reuse the caller's session (no commit, the caller owns the transaction)
    or open a private one that commits and closes on exit.
    """
    if session is not None:
        yield session
        session.flush()
        return

    own = session_factory()
    try:
        yield own
        own.commit()
    except Exception:
        own.rollback()
        raise
    finally:
        own.close()
