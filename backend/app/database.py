from sqlalchemy import create_engine, make_url
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings
from app.models import Base

settings = get_settings()

# pool_pre_ping: verify connections before using them
_pool_options: dict[str, object] = {"pool_pre_ping": True}
if make_url(settings.database_url).get_backend_name() != "sqlite":
    _pool_options.update(pool_size=10, max_overflow=20)

engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    **_pool_options,
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_session_factory() -> sessionmaker[Session]:
    """Dependency returning the session factory for short-lived sessions."""

    return SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """Create every table that does not exist yet."""

    Base.metadata.create_all(bind or engine)
