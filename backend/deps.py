# deps.py — FastAPI dependency providers for the lifecycle core
# Every request gets its own store/dispatcher/auditor bound to the request's
# DB session. Tests override get_geocoder / get_dispatcher / get_auditor.

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from analytics import AnalyticsService
from audit import SqlAuditRecorder
from database import get_db_session
from dispatch import build_dispatcher
from geocoding import NominatimGeocoder
from lifecycle import LifecycleCoordinator
from recurring import RecurringProblemDetector
from store import SqlRecordStore


def get_store(db: AsyncSession = Depends(get_db_session)) -> SqlRecordStore:
    return SqlRecordStore(db)


def get_dispatcher(db: AsyncSession = Depends(get_db_session)):
    return build_dispatcher(db)


def get_auditor(db: AsyncSession = Depends(get_db_session)) -> SqlAuditRecorder:
    return SqlAuditRecorder(db)


def get_geocoder() -> NominatimGeocoder:
    return NominatimGeocoder()


def get_coordinator(
    store: SqlRecordStore = Depends(get_store),
    dispatcher=Depends(get_dispatcher),
    auditor: SqlAuditRecorder = Depends(get_auditor),
) -> LifecycleCoordinator:
    return LifecycleCoordinator(store, store, dispatcher, auditor)


def get_detector(
    store: SqlRecordStore = Depends(get_store),
    dispatcher=Depends(get_dispatcher),
    geocoder=Depends(get_geocoder),
) -> RecurringProblemDetector:
    return RecurringProblemDetector(store, store, dispatcher, geocoder)


def get_analytics(store: SqlRecordStore = Depends(get_store)) -> AnalyticsService:
    return AnalyticsService(store, store)
