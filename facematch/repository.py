"""
Face Store and Access Log Repositories

Database operations for the faces and access_logs tables using SQLAlchemy
async. Every method takes the AsyncSession to work on; nothing here holds a
database handle of its own.
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from facematch.config import (
    LOG_RETENTION_COUNT,
    LOG_RETENTION_DAYS,
    LOG_PAGE_DEFAULT,
    LOG_PAGE_MAX,
    EXPORT_FORMAT,
    EXPORT_VERSION
)
from facematch.errors import LogWriteError, StoreError
from facematch.models import ACTIONS, AccessLogDB, FaceRecordDB, utcnow
from facematch.schemas import FaceRecord
from facematch.vector_math import validate_name, validate_vector

logger = logging.getLogger(__name__)


def decode_vector(record: FaceRecordDB) -> List[float]:
    """
    Parse the stored JSON vector of a face record.

    Raises:
        ValueError: if the stored text is not a JSON array of numbers
    """
    vector = json.loads(record.vector)
    if not isinstance(vector, list):
        raise ValueError(f"stored vector for face {record.id} is not an array")
    return [float(v) for v in vector]


def page_bounds(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    """Clamp a log page request: limit in [1, LOG_PAGE_MAX], offset >= 0."""
    if not limit or limit < 1:
        limit = LOG_PAGE_DEFAULT
    return min(limit, LOG_PAGE_MAX), max(0, offset or 0)


async def read(session: AsyncSession, statement, what: str):
    """
    Execute a read statement, turning driver errors into StoreError.

    Raises:
        StoreError: the query failed; the session is rolled back
    """
    try:
        return await session.execute(statement)
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Failed to read {what}: {e}")
        raise StoreError(f"Failed to read {what}: {e}") from e


class FaceStoreRepository:
    """
    Repository class for face records.

    A face is identified by its name: enrolling an existing name replaces
    its vector instead of creating a second row.
    """

    @staticmethod
    async def list_all(session: AsyncSession) -> List[FaceRecordDB]:
        """Get every face record, sorted by name ascending."""
        result = await read(
            session,
            select(FaceRecordDB).order_by(FaceRecordDB.name.asc(), FaceRecordDB.id.asc()),
            "faces"
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_by_name(session: AsyncSession, name: str) -> Optional[FaceRecordDB]:
        result = await read(
            session, select(FaceRecordDB).where(FaceRecordDB.name == name), "faces"
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def enroll(session: AsyncSession, name: Any, vector: Any) -> Tuple[int, bool]:
        """
        Create or replace the face record for a name.

        Args:
            session: Database session
            name: Identity name, trimmed before use
            vector: 256 finite numbers

        Returns:
            (face_id, was_update)

        Raises:
            ValidationError: bad name or vector, nothing is written
            StoreError: the write failed and was rolled back
        """
        clean_name = validate_name(name)
        values = validate_vector(vector)
        vector_json = json.dumps(values)

        try:
            existing = await FaceStoreRepository.get_by_name(session, clean_name)
            now = utcnow()

            if existing:
                existing.vector = vector_json
                existing.updated_at = now
                record = existing
            else:
                record = FaceRecordDB(
                    name=clean_name,
                    vector=vector_json,
                    created_at=now,
                    updated_at=now
                )
                session.add(record)

            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Failed to store face '{clean_name}': {e}")
            raise StoreError(f"Failed to store face '{clean_name}': {e}") from e

        logger.info(f"{'Updated' if existing else 'Enrolled'} face '{clean_name}' (id={record.id})")
        return record.id, existing is not None

    @staticmethod
    async def clear_all(session: AsyncSession) -> Tuple[int, int]:
        """
        Delete every face record and every access log entry in one transaction.

        Returns:
            (faces_deleted, logs_deleted)
        """
        try:
            logs_result = await session.execute(
                delete(AccessLogDB).execution_options(synchronize_session=False)
            )
            faces_result = await session.execute(
                delete(FaceRecordDB).execution_options(synchronize_session=False)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Failed to clear database: {e}")
            raise StoreError(f"Failed to clear database: {e}") from e

        session.expunge_all()
        faces_deleted = faces_result.rowcount or 0
        logs_deleted = logs_result.rowcount or 0
        logger.warning(f"Cleared {faces_deleted} faces and {logs_deleted} logs")
        return faces_deleted, logs_deleted

    @staticmethod
    async def list_materialized(session: AsyncSession) -> List[FaceRecord]:
        """
        Every face sorted by name with its vector parsed.

        Records whose stored vector cannot be parsed are skipped.
        """
        faces = []
        for record in await FaceStoreRepository.list_all(session):
            try:
                faces.append(FaceStoreRepository.db_to_schema(record))
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping face {record.id} ('{record.name}'), bad vector: {e}")
        return faces

    @staticmethod
    async def export_all(session: AsyncSession) -> Dict[str, Any]:
        """
        Dump every face with its vector materialized as a list of floats.

        Returns:
            Export envelope tagged with format, version and export time
        """
        labels = await FaceStoreRepository.list_materialized(session)
        return {
            "version": EXPORT_VERSION,
            "format": EXPORT_FORMAT,
            "count": len(labels),
            "exported_at": datetime.now(timezone.utc),
            "labels": labels
        }

    @staticmethod
    async def count(session: AsyncSession) -> int:
        result = await read(session, select(func.count(FaceRecordDB.id)), "face count")
        return result.scalar() or 0

    @staticmethod
    async def recent(session: AsyncSession, limit: int = 5) -> List[FaceRecordDB]:
        """Most recently created faces first."""
        result = await read(
            session,
            select(FaceRecordDB)
            .order_by(FaceRecordDB.created_at.desc(), FaceRecordDB.id.desc())
            .limit(limit),
            "recent faces"
        )
        return list(result.scalars().all())

    @staticmethod
    def db_to_schema(db_record: FaceRecordDB) -> FaceRecord:
        """Convert database model to Pydantic schema, parsing the vector."""
        return FaceRecord(
            id=db_record.id,
            name=db_record.name,
            vector=decode_vector(db_record),
            created_at=db_record.created_at,
            updated_at=db_record.updated_at
        )


class AccessLogRepository:
    """
    Repository class for the access log.

    The log is append-only apart from retention pruning and the
    search -> recognize re-tag. It never holds more than
    LOG_RETENTION_COUNT entries after a write.
    """

    @staticmethod
    async def append(
        session: AsyncSession,
        action: str,
        face_id: Optional[int] = None,
        name: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> int:
        """
        Append one entry and apply the count cap.

        Returns:
            Id of the new entry

        Raises:
            LogWriteError: the write failed and was rolled back
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown log action '{action}'")

        try:
            entry = AccessLogDB(
                face_id=face_id,
                name=name,
                confidence=confidence,
                action=action,
                timestamp=utcnow()
            )
            session.add(entry)
            await session.flush()

            newest = (
                select(AccessLogDB.id)
                .order_by(AccessLogDB.timestamp.desc(), AccessLogDB.id.desc())
                .limit(LOG_RETENTION_COUNT)
            )
            pruned = await session.execute(
                delete(AccessLogDB)
                .where(AccessLogDB.id.not_in(newest))
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise LogWriteError(f"Failed to write '{action}' log entry: {e}") from e

        if pruned.rowcount:
            logger.debug(f"Pruned {pruned.rowcount} log entries over the {LOG_RETENTION_COUNT} cap")
        return entry.id

    @staticmethod
    async def record(
        session: AsyncSession,
        action: str,
        face_id: Optional[int] = None,
        name: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> Optional[int]:
        """
        Best-effort append. Failures are logged and swallowed.

        Returns:
            Id of the new entry, or None if the write failed
        """
        try:
            return await AccessLogRepository.append(
                session, action, face_id=face_id, name=name, confidence=confidence
            )
        except LogWriteError as e:
            logger.error(f"Logging error: {e}")
            return None

    @staticmethod
    async def retag(session: AsyncSession, entry_id: int, action: str = "recognize") -> bool:
        """
        Re-tag one search entry.

        Returns:
            True if the entry existed and was still tagged search
        """
        try:
            result = await session.execute(
                update(AccessLogDB)
                .where(AccessLogDB.id == entry_id)
                .where(AccessLogDB.action == "search")
                .values(action=action)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise LogWriteError(f"Failed to re-tag log entry {entry_id}: {e}") from e

        return result.rowcount > 0

    @staticmethod
    async def retag_latest_for_face(
        session: AsyncSession,
        face_id: Optional[int],
        action: str = "recognize"
    ) -> bool:
        """
        Re-tag the most recent entry for a face.

        Used when no entry handle is available. Under concurrent recognitions
        of the same face this can land on another request's entry.
        """
        if face_id is None:
            return False
        try:
            latest = await session.execute(
                select(AccessLogDB.id)
                .where(AccessLogDB.face_id == face_id)
                .order_by(AccessLogDB.timestamp.desc(), AccessLogDB.id.desc())
                .limit(1)
            )
            entry_id = latest.scalar_one_or_none()
        except SQLAlchemyError as e:
            await session.rollback()
            raise LogWriteError(f"Failed to find latest log entry for face {face_id}: {e}") from e

        if entry_id is None:
            return False
        return await AccessLogRepository.retag(session, entry_id, action)

    @staticmethod
    async def prune_older_than(
        session: AsyncSession,
        age: Optional[timedelta] = None
    ) -> int:
        """
        Delete entries older than ``age`` (default LOG_RETENTION_DAYS days).

        Returns:
            Number of entries deleted
        """
        if age is None:
            age = timedelta(days=LOG_RETENTION_DAYS)
        cutoff = utcnow() - age

        try:
            result = await session.execute(
                delete(AccessLogDB)
                .where(AccessLogDB.timestamp < cutoff)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreError(f"Failed to prune access logs: {e}") from e

        return result.rowcount or 0

    @staticmethod
    async def list_entries(
        session: AsyncSession,
        action: Optional[str] = None,
        limit: int = LOG_PAGE_DEFAULT,
        offset: int = 0
    ) -> Tuple[List[AccessLogDB], int, bool]:
        """
        Page through the log, newest first.

        Args:
            session: Database session
            action: Only entries with this tag
            limit: Page size, capped at LOG_PAGE_MAX (non-positive means default)
            offset: Entries to skip, negative treated as 0

        Returns:
            (entries, total matching, has_more)
        """
        limit, offset = page_bounds(limit, offset)

        query = select(AccessLogDB)
        count_query = select(func.count(AccessLogDB.id))
        if action:
            query = query.where(AccessLogDB.action == action)
            count_query = count_query.where(AccessLogDB.action == action)

        query = (
            query.order_by(AccessLogDB.timestamp.desc(), AccessLogDB.id.desc())
            .offset(offset)
            .limit(limit)
        )

        result = await read(session, query, "access logs")
        entries = list(result.scalars().all())
        total = (await read(session, count_query, "access log count")).scalar() or 0

        return entries, total, offset + len(entries) < total

    @staticmethod
    async def distinct_actions(session: AsyncSession) -> List[str]:
        """Action tags currently present in the log, ascending."""
        result = await read(
            session,
            select(AccessLogDB.action).distinct().order_by(AccessLogDB.action),
            "access log actions"
        )
        return list(result.scalars().all())

    @staticmethod
    async def count(session: AsyncSession) -> int:
        result = await read(session, select(func.count(AccessLogDB.id)), "access log count")
        return result.scalar() or 0

    @staticmethod
    async def recent(session: AsyncSession, limit: int = 10) -> List[AccessLogDB]:
        entries, _, _ = await AccessLogRepository.list_entries(session, limit=limit)
        return entries
