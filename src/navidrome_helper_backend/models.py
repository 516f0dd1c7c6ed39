from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPhase(str, Enum):
    QUEUED = "queued"
    FETCHING_SOURCE = "fetching_source"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    PLACING = "placing"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SourceType(str, Enum):
    ALBUM = "album"
    SONG = "song"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImportItem(CamelModel):
    id: str
    type: str = SourceType.ALBUM.value
    title: str = ""
    artist: str = ""
    album_id: Optional[str] = None
    album_title: Optional[str] = None
    cover_url: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _validate_type(cls, value: object) -> object:
        """Missing or blank types mean album; anything else must be album or song."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return SourceType.ALBUM.value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized not in {source_type.value for source_type in SourceType}:
                raise ValueError(f"unsupported item type {value!r}, expected album or song")
            return normalized
        return value


class ImportRequest(CamelModel):
    items: List[ImportItem] = Field(default_factory=list)


class ImportAccepted(CamelModel):
    job_id: str


class JobItem(CamelModel):
    job_id: str = ""
    source_id: str
    source_type: str
    title: str = ""
    artist: str = ""
    album: str = ""
    cover_url: str = ""
    status: ItemStatus = ItemStatus.QUEUED
    message: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobLogLine(CamelModel):
    job_id: str
    message: str
    created_at: datetime


class Job(CamelModel):
    id: str
    status: JobStatus = JobStatus.QUEUED
    phase: JobPhase = JobPhase.QUEUED
    message: str = ""
    progress: float = 0.0
    artist: str = ""
    album: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    items: List[JobItem] = Field(default_factory=list)
    logs: List[JobLogLine] = Field(default_factory=list)


class JobList(CamelModel):
    jobs: List[Job]


class LibraryEntry(CamelModel):
    artist: str
    album: str
    path: str
    track_count: int = 0
    updated_at: datetime


class LibraryList(CamelModel):
    library: List[LibraryEntry]


class SearchResult(CamelModel):
    id: str
    type: str
    title: str
    artist: str
    album_id: Optional[str] = None
    album_title: Optional[str] = None
    cover_url: str = ""
    tracks: Optional[int] = None
    duration: Optional[int] = None
    exists: bool = False


class SearchResponse(CamelModel):
    items: List[SearchResult]
