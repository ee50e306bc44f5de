from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from ..core.config import settings

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_tables(bind: Optional[Engine] = None):
    """Create all tables"""
    from ..models.command_queue import LightCommand  # noqa: F401
    from ..models.settings import ApplicationSetting  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
