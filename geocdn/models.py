from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import datetime, timezone
from enum import Enum
import re
import uuid

COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class RoutingReason(str, Enum):
    GEO = "geo"
    LATENCY = "latency"
    FAILOVER = "failover"
    WEIGHTED = "weighted"

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

class Origin(BaseModel):
    """A backing server for a region, with its own health state"""
    id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    weight: float = Field(default=1.0, ge=0)
    healthy: bool = True
    last_check: Optional[datetime] = None
    latency_ms: float = 0.0
    consecutive_failures: int = Field(default=0, ge=0)

class Region(BaseModel):
    """A geographic routing domain owning origins and a country affinity"""
    id: str = Field(min_length=1)
    name: str
    code: str
    origins: List[Origin] = Field(default_factory=list)
    priority: int = 1
    countries: List[str] = Field(default_factory=list)
    fallback: Optional[str] = None

    @field_validator("countries")
    @classmethod
    def normalize_countries(cls, countries: List[str]) -> List[str]:
        normalized = []
        for country in countries:
            code = country.strip().upper()
            if not COUNTRY_CODE.match(code):
                raise ValueError(f"Invalid ISO country code: {country!r}")
            if code not in normalized:
                normalized.append(code)
        return normalized

    @model_validator(mode="after")
    def check_references(self) -> "Region":
        origin_ids = [origin.id for origin in self.origins]
        if len(origin_ids) != len(set(origin_ids)):
            raise ValueError(f"Duplicate origin id in region {self.id}")
        if self.fallback == self.id:
            raise ValueError(f"Region {self.id} cannot fall back to itself")
        return self

    def healthy_origins(self) -> List[Origin]:
        return [origin for origin in self.origins if origin.healthy]

    def is_healthy(self) -> bool:
        return any(origin.healthy for origin in self.origins)

    def average_latency(self) -> Optional[float]:
        """Mean latency of healthy origins, None when nothing is healthy"""
        healthy = self.healthy_origins()
        if not healthy:
            return None
        return sum(origin.latency_ms for origin in healthy) / len(healthy)

class RoutingDecision(BaseModel):
    """Result of a single routing evaluation"""
    region: Region
    origin: Origin
    reason: RoutingReason
    fallback: bool = False

class RegionHealthStatus(BaseModel):
    """Derived health summary for one region"""
    region_id: str
    healthy: bool
    available_origins: int
    total_origins: int
    avg_latency_ms: float
    last_check: Optional[datetime] = None

class ReplicationJob(BaseModel):
    """Copy of a set of object paths from one region to others"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_region: str
    target_regions: List[str]
    paths: List[str]
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    errors: List[str] = Field(default_factory=list)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

class CacheEntry(BaseModel):
    """Region-scoped cache record stored in the key-value store"""
    body: str
    content_type: str
    etag: str
    cached_at: datetime = Field(default_factory=utcnow)

class CachedContent(BaseModel):
    """Cache hit returned to callers"""
    content: str
    content_type: str
    etag: str
    region_id: str

# API models

class ReplicationRequest(BaseModel):
    source_region: str
    target_regions: List[str] = Field(min_length=1)
    paths: List[str] = Field(min_length=1)

class CacheWriteRequest(BaseModel):
    region_id: str
    content: str
    content_type: str = "application/octet-stream"
    ttl: Optional[int] = Field(default=None, gt=0)

class CacheWarmRequest(BaseModel):
    path: str
    content: str
    content_type: str = "application/octet-stream"
    ttl: Optional[int] = Field(default=None, gt=0)

class PurgeResponse(BaseModel):
    path: str
    purged: int
    regions: List[str]

class WarmResponse(BaseModel):
    path: str
    regions: List[str]

class HealthResponse(BaseModel):
    status: str
    service: str
    total_regions: int
    healthy_regions: int
    regions: Dict[str, bool]
