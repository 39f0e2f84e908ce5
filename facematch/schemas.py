"""
Pydantic models for API request/response schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Optional, List
from datetime import datetime

from facematch.config import DEFAULT_THRESHOLD, VECTOR_DIM


# ==================== Requests ====================

class EnrollRequest(BaseModel):
    """Schema for enrolling or updating a face"""
    name: str = Field(..., description="Identity name, unique and case-sensitive")
    vector: Any = Field(..., description=f"Face vector of {VECTOR_DIM} floats")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Budi",
                "vector": [0.0123, 0.0456, 0.0031, 0.0]
            }
        }


class SearchRequest(BaseModel):
    """Schema for search and recognize requests"""
    vector: Any = Field(..., description=f"Query vector of {VECTOR_DIM} floats")
    threshold: float = Field(default=DEFAULT_THRESHOLD, description="Minimum confidence for a match")


class BatchEnrollRequest(BaseModel):
    """Schema for batch enrollment; items are validated one by one"""
    faces: List[Any] = Field(..., description="List of {name, vector} objects")


class LedRequest(BaseModel):
    state: str = Field(..., description='"on" or "off"')


# ==================== Faces ====================

class FaceRecord(BaseModel):
    """Schema for a face record with its vector"""
    id: int = Field(..., description="Face identifier")
    name: str = Field(..., description="Identity name")
    vector: List[float] = Field(..., description="Stored face vector")
    created_at: Optional[datetime] = Field(default=None, description="Timestamp when enrolled")
    updated_at: Optional[datetime] = Field(default=None, description="Timestamp of the last re-enroll")


class FaceListResponse(BaseModel):
    success: bool = True
    count: int = Field(..., description="Number of faces")
    faces: List[FaceRecord] = Field(..., description="Faces sorted by name")


class EnrollResponse(BaseModel):
    """Schema for enroll response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    face_id: int = Field(..., description="Id of the enrolled or updated face")
    name: str = Field(..., description="Trimmed identity name")
    updated: bool = Field(..., description="True if an existing face was replaced")


class MatchResult(BaseModel):
    """Schema for a search/recognize result"""
    match: bool = Field(..., description="Whether confidence reached the threshold")
    id: Optional[int] = Field(default=None, description="Best candidate face id")
    name: str = Field(..., description="Best candidate name, 'Unknown' if none")
    confidence: float = Field(..., ge=0, le=1, description="Cosine similarity of the best candidate")
    threshold: float = Field(..., description="Threshold used for this comparison")

    class Config:
        json_schema_extra = {
            "example": {
                "match": True,
                "id": 3,
                "name": "Budi",
                "confidence": 0.9731,
                "threshold": 0.9
            }
        }


class BatchItemError(BaseModel):
    index: int = Field(..., description="Position of the item in the request")
    name: str = Field(..., description="Item name, 'unknown' if missing")
    error: str = Field(..., description="Why the item was rejected")


class BatchResult(BaseModel):
    imported: int = Field(..., description="Items enrolled or updated")
    failed: int = Field(..., description="Items rejected")
    errors: List[BatchItemError] = Field(default_factory=list)


class BatchEnrollResponse(BaseModel):
    success: bool = True
    imported: int
    failed: int
    errors: Optional[List[BatchItemError]] = None
    message: str


class ExportResponse(BaseModel):
    version: str
    format: str
    count: int
    exported_at: datetime
    labels: List[FaceRecord]


class ClearResponse(BaseModel):
    success: bool = True
    message: str
    cleared_faces: int
    cleared_logs: int


class LedResponse(BaseModel):
    success: bool
    message: str
    state: str
    timestamp: datetime
    note: str


# ==================== Logs & Stats ====================

class LogEntry(BaseModel):
    """Schema for an access log entry"""
    id: int
    face_id: Optional[int] = None
    name: Optional[str] = None
    confidence: Optional[float] = None
    action: str
    timestamp: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class LogFilters(BaseModel):
    available_actions: List[str]


class LogListResponse(BaseModel):
    logs: List[LogEntry]
    pagination: Pagination
    filters: LogFilters


class RecentFace(BaseModel):
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class SystemInfo(BaseModel):
    database: str
    uptime_seconds: float
    version: str


class Statistics(BaseModel):
    faces: int
    total_logs: int


class RecentActivity(BaseModel):
    logs: List[LogEntry]
    recent_faces: List[RecentFace]


class StatsResponse(BaseModel):
    system: SystemInfo
    statistics: Statistics
    recent_activity: RecentActivity


class PruneResponse(BaseModel):
    success: bool = True
    deleted: int = Field(..., description="Log entries removed")
    older_than_days: int


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Bad Request",
                "message": "vector must be an array of 256 floats"
            }
        }
