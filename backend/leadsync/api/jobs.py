from fastapi import APIRouter, Depends, HTTPException
from typing import Any, Dict
import logging

from ..config import Settings
from ..db import get_db
from ..jobs import run_job
from ..services.ingestion import IngestionError

logger = logging.getLogger(__name__)

router = APIRouter()

_settings = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_store(settings: Settings = Depends(get_settings)):
    return get_db(settings)


async def _run(name: str, settings: Settings, db) -> Dict[str, Any]:
    logger.info(f"Job {name} triggered over HTTP")
    try:
        return await run_job(name, settings, db)
    except IngestionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.exception(f"Job {name} failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"{name} job failed")


@router.post("/ingest")
async def ingest_calls(settings: Settings = Depends(get_settings), db=Depends(get_store)):
    return await _run("ingest", settings, db)


@router.post("/enrich")
async def enrich_calls(settings: Settings = Depends(get_settings), db=Depends(get_store)):
    return await _run("enrich", settings, db)


@router.post("/sync")
async def sync_bookings(settings: Settings = Depends(get_settings), db=Depends(get_store)):
    return await _run("sync", settings, db)
