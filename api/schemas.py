from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobResultItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    pool_video_id: str = Field(..., alias="poolVideoId")
    success: bool
    transcoded_url: Optional[str] = Field(default=None, alias="transcodedUrl")
    error: Optional[str] = None
    job_id: Optional[str] = Field(default=None, alias="jobId")


class BatchResults(BaseModel):
    successful: List[JobResultItem] = Field(default_factory=list)
    failed: List[JobResultItem] = Field(default_factory=list)
    total: int = 0


class TranscodeRunResponse(BaseModel):
    """Summary of one batch transcoding run."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    processed: Optional[int] = None
    results: Optional[BatchResults] = None


class CheckDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    checked: int = 0
    updated: int = 0
    failed: int = 0
    possibly_stuck: int = Field(default=0, alias="possiblyStuck")
    orphaned: int = 0


class CheckRunResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    details: Optional[CheckDetails] = None


class PoolStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    ready: int = 0
    processing: int = 0
    error: int = 0
    needs_transcoding: int = Field(default=0, alias="needsTranscoding")
    possibly_stuck: int = Field(default=0, alias="possiblyStuck")
    recently_completed: int = Field(default=0, alias="recentlyCompleted")


class PoolStatusResponse(BaseModel):
    success: bool
    stats: Optional[PoolStats] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    checks: Dict[str, bool]
