"""
==============================================================================
Health Check Endpoints
==============================================================================

System health status endpoints for monitoring and orchestration.

==============================================================================
"""

from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockscan.config import Settings, get_settings
from stockscan.core.exceptions import OcrUnavailable
from stockscan.db.database import get_db
from stockscan.db.models import InventoryItem
from stockscan.scanner.decoder import TesseractOcrEngine


router = APIRouter(prefix="/health", tags=["Health"])


class HealthController:
    """Controller for health check operations."""

    def __init__(self, db: Session, settings: Settings):
        self._db = db
        self._settings = settings

    def check_database(self) -> str:
        """Check database connectivity."""
        try:
            self._db.execute(text("SELECT 1"))
            return "healthy"
        except SQLAlchemyError:
            return "unhealthy"

    def count_items(self) -> int:
        try:
            return self._db.query(func.count(InventoryItem.id)).scalar() or 0
        except SQLAlchemyError:
            return 0

    def check_ocr(self) -> str:
        """OCR is optional: its absence degrades nothing but the fallback."""
        try:
            TesseractOcrEngine(self._settings.tesseract_cmd).load()
            return "healthy"
        except OcrUnavailable:
            return "unavailable"

    def get_health(self) -> dict:
        """Get full health status."""
        db_status = self.check_database()

        overall = "healthy" if db_status == "healthy" else "degraded"

        return {
            "status": overall,
            "components": {
                "api": "healthy",
                "database": db_status,
                "ocr": self.check_ocr(),
                "inventory_backend": self._settings.inventory_backend,
            },
            "details": {
                "items": self.count_items() if db_status == "healthy" else 0
            }
        }


@router.get("")
async def health_check(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Health check endpoint.

    Returns system status including API, database and OCR engine.
    """
    controller = HealthController(db, settings)
    return controller.get_health()


@router.get("/ready")
async def readiness_check():
    """Readiness probe for container orchestration."""
    return {"ready": True}


@router.get("/live")
async def liveness_check():
    """Liveness probe for container orchestration."""
    return {"alive": True}
