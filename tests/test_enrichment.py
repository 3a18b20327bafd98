"""Tests for transcript enrichment: reservation, first-writer-wins merging and status bookkeeping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from leadsync.schemas.pydantic_schemas import ExtractionResult
from leadsync.services.enrichment import EnrichmentPipeline, build_enrichment_update
from leadsync.services.openai_client import OpenAIClient


def make_extractor(*results):
    extractor = MagicMock()
    extractor.extract_call_details = AsyncMock(side_effect=list(results))
    return extractor


def fake_completion(content):
    completions = MagicMock()
    completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    ))
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestBuildEnrichmentUpdate:
    def test_only_null_columns_are_filled(self, stored_call):
        current = stored_call(client_name="Dana Reyes", client_email=None, summary=None)
        extracted = ExtractionResult(client_name="Someone Else", client_email="dana@example.com", summary="Furnace out")

        updates = build_enrichment_update(current, extracted)

        assert "client_name" not in updates
        assert updates["client_email"] == "dana@example.com"
        assert updates["summary"] == "Furnace out"

    def test_appointment_time_comes_from_start(self, stored_call):
        extracted = ExtractionResult(appointment_date="2099-06-01", appointment_start="09:00", appointment_end="10:00")

        updates = build_enrichment_update(stored_call(), extracted)

        assert updates["appointment_date"] == "2099-06-01"
        assert updates["appointment_time"] == "09:00"
        assert updates["appointment_start"] == "09:00"
        assert updates["appointment_end"] == "10:00"

    def test_vague_dates_are_not_written(self, stored_call):
        extracted = ExtractionResult(appointment_date="next week", appointment_start="morning")
        updates = build_enrichment_update(stored_call(), extracted)
        assert "appointment_date" not in updates
        assert "appointment_start" not in updates
        assert "appointment_time" not in updates

    def test_intent_and_lead_type(self, stored_call):
        updates = build_enrichment_update(stored_call(), ExtractionResult(intent_category="Emergency"))
        assert updates["intent"] == "Emergency"
        assert updates["lead_type"] == "Emergency"

        updates = build_enrichment_update(stored_call(), ExtractionResult(intent_category="Inquiry"))
        assert updates["intent"] == "Inquiry"
        assert "lead_type" not in updates

    def test_nothing_extracted(self, stored_call):
        assert build_enrichment_update(stored_call(), ExtractionResult()) == {}


class TestExtractionResultParse:
    def test_valid_object(self):
        result = ExtractionResult.parse('{"client_email": " dana@example.com ", "junk": 1, "summary": ""}')
        assert result.client_email == "dana@example.com"
        assert result.summary is None

    def test_non_json_or_non_object(self):
        assert ExtractionResult.parse("Sure! Here is the data") is None
        assert ExtractionResult.parse("[1, 2]") is None
        assert ExtractionResult.parse(None) is None

    def test_nested_values_are_dropped(self):
        result = ExtractionResult.parse('{"client_address": {"street": "1 Main St"}, "appointment_start": 9}')
        assert result.client_address is None
        assert result.appointment_start == "9"


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_parses_json_reply(self, settings):
        client = OpenAIClient(settings, client=fake_completion('{"client_name": "Dana", "intent_category": "Service"}'))

        result = await client.extract_call_details("transcript")

        assert result.client_name == "Dana"
        assert result.intent_category == "Service"
        kwargs = client.client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "transcript" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_unparseable_reply_is_empty_result(self, settings):
        client = OpenAIClient(settings, client=fake_completion("not json"))
        result = await client.extract_call_details("transcript")
        assert result == ExtractionResult()

    @pytest.mark.asyncio
    async def test_simulated_mode_classifies_intent(self, settings):
        client = OpenAIClient(settings)
        assert client.simulated
        result = await client.extract_call_details("there is a leak, it is an emergency")
        assert result.intent_category == "Emergency"


class TestEnrichmentRun:
    @pytest.mark.asyncio
    async def test_first_writer_wins(self, db, settings, stored_call):
        db.upsert_calls([stored_call("c1", client_email=None)])
        extractor = make_extractor(
            ExtractionResult(client_email="first@example.com"),
            ExtractionResult(client_email="second@example.com"),
        )
        pipeline = EnrichmentPipeline(db, extractor, settings)

        summary = await pipeline.run()
        assert summary.success == 1
        assert db.calls["c1"]["client_email"] == "first@example.com"
        assert db.calls["c1"]["gpt_status"] == 2

        db.calls["c1"]["gpt_status"] = 0
        await pipeline.run()
        assert db.calls["c1"]["client_email"] == "first@example.com"

    @pytest.mark.asyncio
    async def test_only_pending_ended_calls_with_transcripts_are_selected(self, db, settings, stored_call):
        db.upsert_calls([
            stored_call("c1"),
            stored_call("c2", call_status="ongoing"),
            stored_call("c3", gpt_status=2),
            stored_call("c4", transcript=None),
        ])
        extractor = make_extractor(ExtractionResult())
        summary = await EnrichmentPipeline(db, extractor, settings).run()

        assert summary.selected == 1
        assert extractor.extract_call_details.await_count == 1
        assert db.calls["c2"]["gpt_status"] == 0
        assert db.calls["c4"]["gpt_status"] == 0

    @pytest.mark.asyncio
    async def test_reservation_failure_aborts_run(self, db, settings, stored_call):
        db.upsert_calls([stored_call("c1"), stored_call("c2")])
        db.mark_calls_processing = MagicMock(side_effect=RuntimeError("db down"))
        extractor = make_extractor()

        summary = await EnrichmentPipeline(db, extractor, settings).run()

        assert summary.aborted
        assert summary.selected == 2
        extractor.extract_call_details.assert_not_awaited()
        assert db.calls["c1"]["gpt_status"] == 0

    @pytest.mark.asyncio
    async def test_short_transcript_is_skipped_as_completed(self, db, settings, stored_call):
        db.upsert_calls([stored_call("c1", transcript="Hello? Anyone there?")])
        extractor = make_extractor()

        summary = await EnrichmentPipeline(db, extractor, settings).run()

        extractor.extract_call_details.assert_not_awaited()
        assert summary.success == 1
        assert db.calls["c1"]["gpt_status"] == 2

    @pytest.mark.asyncio
    async def test_extraction_error_marks_call_failed(self, db, settings, stored_call):
        db.upsert_calls([stored_call("c1"), stored_call("c2", client_name=None)])
        extractor = make_extractor(RuntimeError("rate limited"), ExtractionResult(client_name="Sam"))

        summary = await EnrichmentPipeline(db, extractor, settings).run()

        assert summary.success == 1
        assert summary.failed == 1
        assert db.calls["c1"]["gpt_status"] == -1
        assert db.calls["c2"]["gpt_status"] == 2
        assert db.calls["c2"]["client_name"] == "Sam"

    @pytest.mark.asyncio
    async def test_update_write_failure_marks_call_failed(self, db, settings, stored_call):
        db.upsert_calls([stored_call("c1", summary=None)])
        real_update = db.update_call

        def update_call(call_id, updates):
            if "gpt_status" not in updates:
                raise RuntimeError("write rejected")
            real_update(call_id, updates)

        db.update_call = update_call
        extractor = make_extractor(ExtractionResult(summary="Furnace repair"))

        summary = await EnrichmentPipeline(db, extractor, settings).run()

        assert summary.failed == 1
        assert db.calls["c1"]["summary"] is None
        assert db.calls["c1"]["gpt_status"] == -1

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, db, settings):
        summary = await EnrichmentPipeline(db, make_extractor(), settings).run()
        assert summary.selected == 0
        assert not summary.aborted
