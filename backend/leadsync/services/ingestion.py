from typing import Any, Dict, List, Tuple
import logging

from ..config import Settings
from ..schemas.pydantic_schemas import CALL_LOG_FIELDS, AgentIngestResult, IngestionSummary, RetellCall
from .batching import chunked, fan_out
from .intent import classify_intent, lead_type_for
from .normalizer import DATE_FIELD_ROLES, filter_fields, normalize_date_fields, utc_now_iso
from .reconciler import filter_calls_for_processing
from .retell_client import RetellClient

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    pass


def map_call(call: RetellCall, agent_id: str) -> Dict[str, Any]:
    """Map a Retell snapshot onto the call_logs columns."""
    intent = classify_intent(call.transcript or call.summary or "")
    now = utc_now_iso()
    mapped = {
        "call_id": call.call_id,
        "agent_id": agent_id,
        "call_status": call.call_status or None,
        "start_timestamp": call.start_timestamp or None,
        "end_timestamp": call.end_timestamp or None,
        "transcript": call.transcript or None,
        "recording_url": call.recording_url or None,
        "call_type": call.call_type or None,
        "from_number": call.from_number or None,
        "appointment_status": call.appointment_status or None,
        "appointment_date": call.appointment_date or None,
        "appointment_time": call.appointment_time or None,
        "client_name": call.resolved_client_name(),
        "client_address": call.resolved_client_address(),
        "client_email": call.resolved_client_email(),
        "notes": call.notes or None,
        "user_sentiment": call.resolved_user_sentiment(),
        "call_successful": call.resolved_call_successful(),
        "in_voicemail": call.resolved_in_voicemail(),
        "processed": call.processed if call.processed is not None else False,
        "created_at": call.created_at or call.start_timestamp or now,
        "updated_at": now,
        "intent": intent,
        "summary": call.resolved_summary(),
        "quick_summary": call.quick_summary or None,
        "lead_type": lead_type_for(intent),
        "job_description": call.job_description or None,
        "job_type": call.resolved_job_type(),
        "appointment_start": call.appointment_start or None,
        "appointment_end": call.appointment_end or None,
        "manual_notes": call.manual_notes or None,
        "call_analysis": call.raw_call_analysis(),
        "email_sent": call.email_sent if call.email_sent is not None else 0,
    }
    return filter_fields(normalize_date_fields(mapped, DATE_FIELD_ROLES), CALL_LOG_FIELDS)


class IngestionPipeline:
    def __init__(self, db, retell: RetellClient, settings: Settings) -> None:
        self.db = db
        self.retell = retell
        self.max_calls = settings.ingest_max_calls
        self.batch_size = settings.ingest_batch_size
        self.chunk_size = settings.upsert_chunk_size

    async def map_calls(self, calls: List[RetellCall], agent_id: str) -> List[Dict[str, Any]]:
        calls_now = calls[:self.max_calls]
        if len(calls) > self.max_calls:
            logger.info(f"Processing {len(calls_now)} calls (out of {len(calls)}) for agent {agent_id}")

        async def _map(call: RetellCall) -> Dict[str, Any]:
            return map_call(call, agent_id)

        rows = await fan_out(calls_now, self.batch_size, _map, label="mapping")

        if len(calls) > self.max_calls:
            logger.info(f"{len(calls) - self.max_calls} calls remain for future processing")
        return rows

    def upsert_calls(self, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
        """Upsert rows in chunks keyed on call_id. A failed chunk counts all its rows as failed."""
        if not rows:
            return 0, 0
        logger.info(f"Bulk upserting {len(rows)} calls to database...")
        success = failed = 0
        total_chunks = (len(rows) + self.chunk_size - 1) // self.chunk_size
        for number, chunk in enumerate(chunked(rows, self.chunk_size), start=1):
            logger.info(f"Upserting batch {number}/{total_chunks} ({len(chunk)} calls)")
            try:
                self.db.upsert_calls(list(chunk))
            except Exception as e:
                logger.error(f"Error upserting batch {number}: {str(e)}")
                failed += len(chunk)
                continue
            success += len(chunk)
        logger.info(f"Database update complete: {success} successful, {failed} failed")
        return success, failed

    async def ingest_for_agent(self, agent_id: str) -> AgentIngestResult:
        calls = await self.retell.list_calls(agent_id)
        if not calls:
            logger.info(f"No calls found for agent {agent_id}")
            return AgentIngestResult(agent_id=agent_id)

        existing = self.db.get_call_statuses([c.call_id for c in calls])
        logger.info(f"Found {len(existing)} existing calls out of {len(calls)} checked")

        to_process = filter_calls_for_processing(calls, existing)
        success = failed = 0
        if not to_process:
            logger.info(f"All calls for agent {agent_id} are already processed")
        else:
            rows = await self.map_calls(to_process, agent_id)
            success, failed = self.upsert_calls(rows)
            logger.info(f"Agent {agent_id}: {success} successful, {failed} failed")

        return AgentIngestResult(
            agent_id=agent_id,
            total_fetched=len(calls),
            existing_calls=len(existing),
            processed=len(to_process),
            success=success,
            failed=failed,
        )

    async def run(self) -> IngestionSummary:
        """Ingest every agent in turn. Store errors while listing agents propagate."""
        logger.info("Fetching all agents from user_profiles...")
        agent_ids = self.db.list_agent_ids()
        if not agent_ids:
            raise IngestionError("No agents found to process")
        logger.info(f"Found {len(agent_ids)} agents: {', '.join(agent_ids)}")

        summary = IngestionSummary()
        for agent_id in agent_ids:
            logger.info(f"Processing agent: {agent_id}")
            try:
                result = await self.ingest_for_agent(agent_id)
            except Exception as e:
                logger.exception(f"Error processing agent {agent_id}: {str(e)}")
                result = AgentIngestResult(agent_id=agent_id, error=str(e))
            summary.agents.append(result)

        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: IngestionSummary) -> None:
        logger.info("PROCESSING COMPLETE")
        logger.info(f"Total calls fetched: {summary.total_fetched}")
        logger.info(f"Total existing calls: {summary.total_existing}")
        logger.info(f"Total calls processed: {summary.total_processed}")
        logger.info(f"Total successful: {summary.total_success}")
        logger.info(f"Total failed: {summary.total_failed}")
        logger.info(f"Agents processed: {len(summary.agents)}")
        for result in summary.agents:
            if result.error:
                logger.info(f"{result.agent_id}: ERROR - {result.error}")
            else:
                logger.info(f"{result.agent_id}: {result.success} success, {result.failed} failed ({result.processed} processed)")
