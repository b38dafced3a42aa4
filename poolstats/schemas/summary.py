from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserOutcome(BaseModel):
    address: str
    ok: bool
    workers: int = 0
    error: Optional[str] = None


class FailedAddress(BaseModel):
    address: str
    error: str


class IngestSummary(BaseModel):
    total: int = 0
    succeeded: int = 0
    failures: List[FailedAddress] = []

    @property
    def failed(self) -> int:
        return len(self.failures)


class RunSummary(BaseModel):
    source_path: str
    mode: str
    started_at: datetime
    duration_ms: int = 0
    pool_stats_recorded: bool = False
    pool_stats_error: Optional[str] = None
    users: IngestSummary = Field(default_factory=IngestSummary)

    @property
    def status(self) -> str:
        if not self.pool_stats_recorded:
            return "failure"
        if self.users.failures:
            return "partial"
        return "success"
