from typing import Optional
from fastapi import APIRouter, BackgroundTasks, HTTPException
from .schemas import NotificationOut, PipelineRun, RateOut, RateSummaryOut, StatusResponse, TriggerRequest
from ..alerts.storage import list_recent_notifications, migrate_alerts
from ..config import settings
from ..db import get_conn, migrate
from ..pipeline.orchestrator import get_status, trigger_run
from ..pipeline.runs import get_last_run
from ..rates.analytics import lookback_start, summarize
from ..rates.models import SeriesKey
from ..rates.store import RateStore

router = APIRouter()

@router.get(
    '/health',
    summary="Health check",
    description="Returns service and DB connectivity plus last run metadata.",
    tags=["Health"],
)
def health():
    conn = None
    try:
        conn = get_conn(settings.db_path)
        migrate(conn)
        return {'ok': True, 'db': 'ok', 'last_run': get_last_run(conn)}
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')
    finally:
        if conn is not None:
            conn.close()

@router.post(
    '/runs',
    response_model=PipelineRun,
    status_code=202,
    summary="Trigger pipeline",
    description="Starts the rate pipeline in the background. A repeated trigger_key returns the original run_id.",
    tags=["Pipeline"],
)
def create_run(background: BackgroundTasks, req: Optional[TriggerRequest] = None):
    run_id = trigger_run(background, req.trigger_key if req else None)
    return PipelineRun(run_id=run_id)

@router.get(
    '/runs/{run_id}',
    response_model=StatusResponse,
    summary="Get run status",
    tags=["Pipeline"],
)
def run_status(run_id: str):
    st = get_status(run_id)
    if not st:
        raise HTTPException(404, 'run not found')
    return st

@router.get(
    '/rates/current',
    response_model=list[RateOut],
    summary="Current rate per tracked series",
    tags=["Rates"],
)
def rates_current():
    conn = get_conn(settings.db_path)
    try:
        current = RateStore(conn).current_by_key(settings.current_scan_limit)
    finally:
        conn.close()
    return [current[k].to_dict() for k in sorted(current, key=str)]

@router.get(
    '/rates/{series}/summary',
    response_model=RateSummaryOut,
    summary="52-week stats, period changes and trend",
    description="series is '{term}yr_{loan_type}', e.g. 30yr_conventional.",
    tags=["Rates"],
)
def rate_summary(series: str):
    try:
        key = SeriesKey.parse(series)
    except ValueError:
        raise HTTPException(404, 'unknown series')
    conn = get_conn(settings.db_path)
    try:
        history = RateStore(conn).history(key.term_years, key.loan_type)
    finally:
        conn.close()
    if history:
        since = lookback_start(history[-1].observation_date)
        history = [obs for obs in history if obs.observation_date >= since]
    return {'series': str(key), **summarize(history).to_dict()}

@router.get(
    '/alerts/recent',
    response_model=list[NotificationOut],
    summary="Recent notification attempts",
    tags=["Alerts"],
)
def alerts_recent(limit: int = 50):
    if limit < 1 or limit > 500:
        raise HTTPException(400, 'limit must be 1..500')
    conn = get_conn(settings.db_path)
    try:
        migrate_alerts(conn)
        return list_recent_notifications(conn, limit)
    finally:
        conn.close()

@router.post(
    '/admin/rates/reset',
    summary="Delete all stored rate observations",
    description="Destructive; requires confirm=true.",
    tags=["Admin"],
)
def reset_rates(confirm: bool = False):
    if not confirm:
        raise HTTPException(400, 'confirm=true required')
    conn = get_conn(settings.db_path)
    try:
        deleted = RateStore(conn).reset()
    finally:
        conn.close()
    return {'ok': True, 'deleted': deleted}
