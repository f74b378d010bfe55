"""
Database connection management.

The daily reconciliation job and any other process entry point open sessions
through SessionLocal. Service functions never create sessions themselves;
they receive one from the caller.

Environment variables:
    - DATABASE_URL: SQLAlchemy connection URL (required)
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Database URL must be set via environment variable
DATABASE_URL = os.environ.get("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=False,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)
