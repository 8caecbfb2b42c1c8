"""
SQLAlchemy persistence for jobs and projects.

The job table is the durable queue; the project table backs the project
collaborator the worker reads and writes.
"""

import logging
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


class JobRecord(Base):
    __tablename__ = "clip_jobs"

    id = Column(String, primary_key=True, index=True)
    project_id = Column(String, nullable=False, index=True)
    source_media_url = Column(Text, nullable=False)
    status = Column(String, default="queued", nullable=False, index=True)  # queued, processing, completed, failed
    external_task_id = Column(String, nullable=True)
    external_folder_id = Column(String, nullable=True)
    progress = Column(Integer, default=0, nullable=False)  # 0-100
    attempts = Column(Integer, default=0, nullable=False)
    last_polled_at = Column(DateTime, nullable=True, index=True)
    error = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)  # List of clip dicts
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)


class ProjectRecord(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=True)
    klap_task_id = Column(String, nullable=True)
    klap_folder_id = Column(String, nullable=True)
    folders = Column(JSON, nullable=True)  # {"clips": [], "images": [], "social": [], "blog": []}
    tasks = Column(JSON, nullable=True)  # [{"type": "clips", "status": ..., "progress": ...}]
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with connection pooling suitable for the URL."""
    if database_url.startswith("sqlite"):
        # The worker route and the status routes share the file across threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Engine) -> None:
    """Create all tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating tables: {e}")
        raise


def ping(engine: Engine) -> bool:
    """Return True if the database answers a trivial query."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False
