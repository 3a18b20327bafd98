import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    # Supabase
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    # Retell AI
    retell_api_key: Optional[str] = None
    retell_base_url: str = "https://api.retellai.com"

    # Extraction LLM (Groq is used when its key is present, like the OpenAI client does)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.1-8b-instant"

    # Booking platform
    zt_api_base: Optional[str] = None
    ob_app_url: Optional[str] = None
    zt_timezone_offset_header: str = "-330"
    default_company_id: int = 3

    http_timeout: float = 30.0

    # Ingestion
    lookback_hours: int = 300
    list_calls_limit: int = 1000
    ingest_max_calls: int = 50
    ingest_batch_size: int = 10
    upsert_chunk_size: int = 100

    # Enrichment
    enrich_limit: int = 50
    enrich_batch_size: int = 5
    min_transcript_length: int = 50

    # Booking sync
    sync_batch_limit: int = 10

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from the process environment, loading .env first if present."""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(name.upper())
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls(**values)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
        ]
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
