# web_api.py
# Служебный HTTP API: здоровье, статистика, списки объявлений и метрики Prometheus.
# Запускается внутри процесса бота (bot.py) при заданном WEB_API_PORT.

import datetime
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Header, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from pydantic import BaseModel

from shared.metrics import ADS_ACTIVE
from shared.service import AnnouncementService

logger = logging.getLogger(__name__)


# === Модели ответов ===
class StatsResponse(BaseModel):
    total_count: int
    active_count: int
    total_sent_count: int
    last_sync_time: Optional[str] = None
    scheduled_jobs: int
    remote_enabled: bool


class AnnouncementOut(BaseModel):
    id: int
    content: str
    interval: int
    unit: str
    sent_count: int
    last_sent: Optional[str] = None
    created_at: Optional[str] = None


class GroupAnnouncements(BaseModel):
    group_id: str
    count: int
    announcements: List[AnnouncementOut]


def create_app(service: AnnouncementService, admin_secret: Optional[str] = None) -> FastAPI:
    """Создаёт FastAPI-приложение поверх уже собранного сервиса объявлений."""
    app = FastAPI(title="Group Announcements API")
    app.state.service = service

    def check_secret(x_admin_secret: Optional[str]):
        if admin_secret and x_admin_secret != admin_secret:
            logger.warning("Попытка доступа к API без верного секрета")
            raise HTTPException(status_code=403, detail="Admin access required")

    @app.get("/health", summary="Health check")
    async def health_check():
        """Проверяет работоспособность сервиса."""
        try:
            stats = service.stats()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                {"status": "error", "detail": str(e)},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            )
        return {
            "status": "ok",
            "active_ads": stats['active_count'],
            "scheduled_jobs": stats['scheduled_jobs'],
            "scheduler_running": service.scheduler.running,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()
        }

    @app.get("/stats", summary="Aggregate statistics", response_model=StatsResponse)
    async def get_stats(x_admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret")):
        check_secret(x_admin_secret)
        return service.stats()

    @app.get(
        "/groups/{group_id}/announcements",
        summary="Active announcements of a group",
        response_model=GroupAnnouncements
    )
    async def list_group_ads(
        group_id: str,
        x_admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret")
    ):
        check_secret(x_admin_secret)
        ads = service.list(group_id)
        return {"group_id": group_id, "count": len(ads), "announcements": [ad.to_dict() for ad in ads]}

    @app.get("/metrics", summary="Prometheus metrics")
    async def metrics():
        """Экспортирует метрики для Prometheus."""
        ADS_ACTIVE.set(service.stats()['active_count'])
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
