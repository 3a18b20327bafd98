from typing import Any, Dict, Optional

from .config import Settings
from .db import get_db
from .services.booking_sync import BookingSyncEngine
from .services.enrichment import EnrichmentPipeline
from .services.ingestion import IngestionPipeline
from .services.openai_client import OpenAIClient
from .services.retell_client import RetellClient
from .services.zentrades_client import ZenTradesClient


JOB_NAMES = ("ingest", "enrich", "sync")


def build_ingestion(settings: Settings, db=None) -> IngestionPipeline:
    return IngestionPipeline(db or get_db(settings), RetellClient(settings), settings)


def build_enrichment(settings: Settings, db=None) -> EnrichmentPipeline:
    return EnrichmentPipeline(db or get_db(settings), OpenAIClient(settings), settings)


def build_booking_sync(settings: Settings, db=None) -> BookingSyncEngine:
    return BookingSyncEngine(db or get_db(settings), ZenTradesClient(settings), settings)


async def run_job(name: str, settings: Settings, db: Optional[Any] = None) -> Dict[str, Any]:
    """Run one job and return its summary report."""
    if name == "ingest":
        summary = await build_ingestion(settings, db).run()
        return summary.report()
    if name == "enrich":
        summary = await build_enrichment(settings, db).run()
        return summary.report()
    if name == "sync":
        summary = await build_booking_sync(settings, db).run()
        return summary.report()
    raise ValueError(f"Unknown job: {name}")
