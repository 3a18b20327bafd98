"""Shared fixtures: settings, an in-memory store and builders for provider payloads."""

import pytest

from leadsync.config import Settings
from leadsync.db import InMemoryDB
from leadsync.schemas.pydantic_schemas import RetellCall


LONG_TRANSCRIPT = (
    "Agent: Thanks for calling, how can I help? "
    "User: My furnace stopped working and I need someone to repair it this week."
)


@pytest.fixture
def settings():
    return Settings(
        retell_api_key="key_test",
        zt_api_base="https://zt.example.test",
        ob_app_url="https://ob.example.test",
    )


@pytest.fixture
def db():
    return InMemoryDB()


@pytest.fixture
def retell_call():
    def _build(call_id="call_1", **fields):
        payload = {
            "call_id": call_id,
            "call_status": "ended",
            "start_timestamp": 1710000000000,
            "end_timestamp": 1710000300000,
            "transcript": LONG_TRANSCRIPT,
            "from_number": "+15551234567",
        }
        payload.update(fields)
        return RetellCall.model_validate(payload)
    return _build


@pytest.fixture
def stored_call():
    def _build(call_id="call_1", **fields):
        row = {
            "call_id": call_id,
            "agent_id": "agent_a",
            "call_status": "ended",
            "transcript": LONG_TRANSCRIPT,
            "from_number": "+15551234567",
            "client_name": "Dana Reyes",
            "client_email": "dana@example.com",
            "client_address": "123 Main St, Springfield, IL 62704, USA",
            "appointment_date": None,
            "appointment_time": None,
            "appointment_start": None,
            "appointment_end": None,
            "intent": None,
            "lead_type": None,
            "summary": None,
            "quick_summary": None,
            "job_description": "Furnace repair",
            "job_type": None,
            "gpt_status": 0,
        }
        row.update(fields)
        return row
    return _build
