"""
Pydantic schemas for bulk audio job API operations.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.models.job import AudioJobMode


class BulkGenerateRequest(BaseModel):
    """Schema for starting a bulk audio job."""
    mode: AudioJobMode = Field(AudioJobMode.missing, description='missing, pending or all')
    force_regenerate: bool = Field(False, description='Regenerate every eligible utterance')


class BulkGenerateResponse(BaseModel):
    """Schema for an accepted bulk audio job."""
    success: bool = True
    job_id: int
    project_id: int
    mode: str
    force_regenerate: bool
    status: str
    message: str


class ErrorDetail(BaseModel):
    utterance_id: int
    scene_id: int
    error_message: str


class AudioJobResponse(BaseModel):
    """Schema for a bulk audio job."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    mode: str
    force_regenerate: bool
    narration_provider: Optional[str]
    narration_voice_id: Optional[str]
    status: str
    total_utterances: int
    processed_utterances: int
    success_count: int
    failed_count: int
    skipped_count: int
    last_error: Optional[str]
    progress_percent: int
    error_details: List[ErrorDetail]
    started_by_user_id: Optional[int]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    updated_at: datetime


class BulkStatusResponse(BaseModel):
    """Schema for the latest job of a project."""
    has_job: bool
    job: Optional[AudioJobResponse] = None
    message: Optional[str] = None


class BulkCancelResponse(BaseModel):
    success: bool = True
    job_id: int
    message: str


class BulkHistoryResponse(BaseModel):
    """Schema for a project's job history (newest first)."""
    project_id: int
    jobs: List[AudioJobResponse]
    count: int
