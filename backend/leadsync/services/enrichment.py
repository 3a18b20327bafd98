from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping
import logging

from ..config import Settings
from ..schemas.pydantic_schemas import GPT_COMPLETED, GPT_FAILED, EnrichmentSummary, ExtractionResult
from .batching import fan_out
from .intent import lead_type_for
from .normalizer import DateRole, normalize_date, utc_now_iso
from .openai_client import OpenAIClient

logger = logging.getLogger(__name__)


# call_logs column <- extraction field
ENRICHABLE_FIELDS = (
    ("appointment_date", "appointment_date"),
    ("appointment_time", "appointment_start"),
    ("client_name", "client_name"),
    ("client_address", "client_address"),
    ("client_email", "client_email"),
    ("intent", "intent_category"),
    ("summary", "summary"),
    ("quick_summary", "quick_summary"),
    ("job_description", "job_description"),
    ("job_type", "job_type"),
    ("appointment_start", "appointment_start"),
    ("appointment_end", "appointment_end"),
)

_EXTRACTED_ROLES = {
    "appointment_date": DateRole.DATE,
    "appointment_start": DateRole.TIME,
    "appointment_end": DateRole.TIME,
}


@dataclass
class EnrichmentOutcome:
    call_id: str
    success: bool
    updates: Dict[str, Any] = field(default_factory=dict)


def build_enrichment_update(current: Mapping[str, Any], extracted: ExtractionResult) -> Dict[str, Any]:
    """Pick extracted values for columns that are still null on the stored row.

    Columns that already hold a value are never overwritten.
    """
    values = extracted.model_dump()
    for name, role in _EXTRACTED_ROLES.items():
        values[name] = normalize_date(values.get(name), role)

    updates: Dict[str, Any] = {}
    for column, source in ENRICHABLE_FIELDS:
        if current.get(column) is None and values.get(source):
            updates[column] = values[source]

    lead_type = lead_type_for(values.get("intent_category"))
    if current.get("lead_type") is None and lead_type:
        updates["lead_type"] = lead_type
    return updates


class EnrichmentPipeline:
    def __init__(self, db, extractor: OpenAIClient, settings: Settings) -> None:
        self.db = db
        self.extractor = extractor
        self.limit = settings.enrich_limit
        self.batch_size = settings.enrich_batch_size
        self.min_transcript_length = settings.min_transcript_length

    async def extract(self, call: Mapping[str, Any]) -> EnrichmentOutcome:
        call_id = call["call_id"]
        transcript = call.get("transcript")
        if not transcript or len(transcript) <= self.min_transcript_length:
            logger.info(f"Skipping extraction for call {call_id} (no transcript or too short)")
            return EnrichmentOutcome(call_id=call_id, success=True)

        try:
            extracted = await self.extractor.extract_call_details(transcript)
        except Exception as e:
            logger.error(f"Extraction failed for call {call_id}: {str(e)}")
            return EnrichmentOutcome(call_id=call_id, success=False)

        logger.info(f"Extraction completed for call {call_id}")
        return EnrichmentOutcome(call_id=call_id, success=True, updates=build_enrichment_update(call, extracted))

    def apply(self, outcome: EnrichmentOutcome) -> bool:
        """Write the field update, then the gpt_status that reflects how it went."""
        success = outcome.success
        if outcome.updates:
            try:
                self.db.update_call(outcome.call_id, {**outcome.updates, "updated_at": utc_now_iso()})
                logger.info(f"Updated call {outcome.call_id} with {sorted(outcome.updates)}")
            except Exception as e:
                logger.error(f"Error updating call {outcome.call_id}: {str(e)}")
                success = False
        else:
            logger.info(f"No updates needed for call {outcome.call_id}")

        status = GPT_COMPLETED if success else GPT_FAILED
        try:
            self.db.set_gpt_status(outcome.call_id, status)
            logger.info(f"Call {outcome.call_id} marked as {'completed' if success else 'failed'} (gpt_status={status})")
        except Exception as e:
            logger.error(f"Error updating gpt_status for call {outcome.call_id}: {str(e)}")
        return success

    async def run(self) -> EnrichmentSummary:
        logger.info("Fetching calls that need extraction...")
        calls = self.db.list_calls_for_enrichment(self.limit)
        if not calls:
            logger.info("No calls need extraction")
            return EnrichmentSummary()
        logger.info(f"Found {len(calls)} calls that need extraction (gpt_status=0, call_status='ended')")

        call_ids = [c["call_id"] for c in calls]
        try:
            self.db.mark_calls_processing(call_ids)
        except Exception as e:
            logger.error(f"Failed to mark calls as processing, aborting: {str(e)}")
            return EnrichmentSummary(selected=len(calls), aborted=True)
        logger.info(f"Marked {len(call_ids)} calls as processing (gpt_status=1)")

        outcomes: List[EnrichmentOutcome] = await fan_out(calls, self.batch_size, self.extract, label="extraction")

        summary = EnrichmentSummary(selected=len(calls))
        for outcome in outcomes:
            if self.apply(outcome):
                summary.success += 1
            else:
                summary.failed += 1

        logger.info(f"Extraction run complete: {summary.selected} calls, {summary.success} successful, {summary.failed} failed")
        return summary
