from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import get_config
from .notifications import run_notification_schedule
from .routes import dashboard as dashboard_routes
from .routes import documents as document_routes
from .routes import emergency as emergency_routes
from .routes import fitness as fitness_routes
from .routes import growth as growth_routes
from .routes import medications as medication_routes
from .routes import members as member_routes
from .routes import metrics as metric_routes
from .routes import notifications as notification_routes
from .routes import vaccinations as vaccination_routes
from .routes import visits as visit_routes
from .schemas import NotificationRunResult
from .supabase import SupabaseClient, get_admin_supabase

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or get_config().log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


configure_logging()

app = FastAPI(
    title="Family Health API",
    version="0.1.0",
    description="Family health records, reminders and fitness sync",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().cors_origin_list,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(member_routes.router)
app.include_router(metric_routes.router)
app.include_router(medication_routes.router)
app.include_router(vaccination_routes.router)
app.include_router(visit_routes.router)
app.include_router(document_routes.router)
app.include_router(growth_routes.router)
app.include_router(emergency_routes.router)
app.include_router(fitness_routes.router)
app.include_router(fitness_routes.callback_router)
app.include_router(notification_routes.router)
app.include_router(dashboard_routes.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


def require_cron_secret(cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret")) -> None:
    expected = get_config().cron_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Scheduled jobs are not configured.")
    if not cron_secret or not hmac.compare_digest(cron_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid cron secret.")


@app.post(
    "/internal/notifications/run",
    response_model=NotificationRunResult,
    dependencies=[Depends(require_cron_secret)],
    include_in_schema=False,
)
async def run_notifications(
    supabase: SupabaseClient = Depends(get_admin_supabase),
) -> NotificationRunResult:
    logger.info("notification run triggered")
    return await run_notification_schedule(supabase)
