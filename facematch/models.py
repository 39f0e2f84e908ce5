"""
SQLAlchemy ORM Models for the Face Match Database

CREATE TABLE faces (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    vector TEXT NOT NULL,          -- JSON array of 256 floats
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);

CREATE TABLE access_logs (
    id INTEGER PRIMARY KEY,
    face_id INTEGER,               -- not a foreign key, may outlive the face
    name TEXT,
    confidence REAL,
    action TEXT NOT NULL,
    timestamp TIMESTAMP
);
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Float, Text

from facematch.database import Base


ACTIONS = ("enroll", "update", "search", "recognize", "batch_enroll", "clear_all")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FaceRecordDB(Base):
    """
    SQLAlchemy model for the faces table.

    One row per distinct name; the vector is kept as JSON text.
    """
    __tablename__ = "faces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True, index=True)
    vector = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<FaceRecordDB(id={self.id}, name='{self.name}')>"


class AccessLogDB(Base):
    """SQLAlchemy model for the access_logs table."""
    __tablename__ = "access_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    face_id = Column(Integer, nullable=True, index=True)
    name = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    action = Column(String(32), nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AccessLogDB(id={self.id}, action='{self.action}', face_id={self.face_id})>"

