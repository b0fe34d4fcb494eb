from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from boxoffice.config import get_settings

settings = get_settings()

connect_args = {}
if settings.database_url.startswith("sqlite"):
    # Requests and the sweeper job run on different threads
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    # Import models so they register with Base.metadata
    import boxoffice.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
