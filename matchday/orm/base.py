"""
Declarative base shared by tournaments, teams, matches and results.

Every row gets an integer id and created/updated timestamps.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class BaseModel(Base):
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def touch(self):
        """Bump updated_at even when only child rows changed."""
        self.updated_at = datetime.utcnow()

    @staticmethod
    def _iso(value):
        return value.isoformat() if value else None
