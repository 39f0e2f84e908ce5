"""
Best-match search over the enrolled faces.

Brute-force cosine similarity against every stored vector. Fine for the
few hundred faces a single site enrolls; there is no index.
"""
from typing import Any
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from facematch.config import DEFAULT_THRESHOLD
from facematch.repository import FaceStoreRepository, decode_vector
from facematch.schemas import MatchResult
from facematch.vector_math import similarity, validate_vector

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


async def find_best(
    session: AsyncSession,
    query_vector: Any,
    threshold: float = DEFAULT_THRESHOLD
) -> MatchResult:
    """
    Find the enrolled face most similar to the query vector.

    Earlier records (by name) win ties. A face only becomes the best
    candidate with a positive similarity, so an empty store or an all
    non-positive scan yields "Unknown" with confidence 0.

    Args:
        session: Database session
        query_vector: 256 finite numbers
        threshold: Minimum confidence for ``match``

    Returns:
        MatchResult for the best candidate

    Raises:
        ValidationError: if the query vector is malformed
    """
    query = validate_vector(query_vector)
    threshold = float(threshold)

    best_id = None
    best_name = UNKNOWN_NAME
    best_confidence = 0.0

    faces = await FaceStoreRepository.list_all(session)
    for face in faces:
        try:
            face_vector = decode_vector(face)
        except (ValueError, TypeError) as e:
            logger.warning(f"Vector parse error for face {face.id} ('{face.name}'): {e}")
            continue

        confidence = similarity(query, face_vector)
        if confidence > best_confidence:
            best_id = face.id
            best_name = face.name
            best_confidence = confidence

    result = MatchResult(
        id=best_id,
        name=best_name,
        confidence=best_confidence,
        threshold=threshold,
        match=best_confidence >= threshold
    )

    logger.debug(
        f"Scanned {len(faces)} faces, best '{best_name}' "
        f"(confidence: {best_confidence:.4f}, threshold: {threshold})"
    )
    return result
