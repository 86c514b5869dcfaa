from pydantic import BaseModel
from typing import Optional, Literal

class TriggerRequest(BaseModel):
    trigger_key: Optional[str] = None

class PipelineRun(BaseModel):
    run_id: str

class StatusResponse(BaseModel):
    run_id: str
    trigger_key: Optional[str] = None
    status: Literal['running','succeeded','degraded','failed','skipped']
    started_at_utc: str
    finished_at_utc: Optional[str] = None
    error_message: Optional[str] = None
    rate_as_of_date: Optional[str] = None
    summary: Optional[dict] = None

class RateOut(BaseModel):
    series: str
    observation_date: str
    term_years: int
    loan_type: str
    rate_value: float
    rate_kind: str
    recorded_at_utc: str
    source: str

class RateSummaryOut(BaseModel):
    series: str
    latest: Optional[RateOut] = None
    low_52w: Optional[float] = None
    high_52w: Optional[float] = None
    avg_52w: Optional[float] = None
    change_day: Optional[float] = None
    change_week: Optional[float] = None
    change_month: Optional[float] = None
    change_year: Optional[float] = None
    trend: Literal['up','down','stable']
    points: int

class NotificationOut(BaseModel):
    client_id: Optional[str] = None
    role: str
    channel: str
    sent_at_utc: str
    success: bool
    error: Optional[str] = None
