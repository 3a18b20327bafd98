from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Optional, List, Dict, Any
import json


# Columns accepted by the call_logs table on upsert. Anything else is dropped.
CALL_LOG_FIELDS = (
    "call_id", "agent_id", "call_status", "start_timestamp", "end_timestamp", "transcript",
    "recording_url", "call_type", "from_number", "appointment_status", "appointment_date",
    "appointment_time", "client_name", "client_address", "client_email", "notes",
    "user_sentiment", "call_successful", "in_voicemail", "processed", "created_at", "updated_at",
    "intent", "summary", "quick_summary", "lead_type", "job_description", "job_type",
    "appointment_start", "appointment_end", "manual_notes", "call_analysis", "email_sent",
)

# Enrichment status values stored in call_logs.gpt_status
GPT_PENDING = 0
GPT_PROCESSING = 1
GPT_COMPLETED = 2
GPT_FAILED = -1


class CallAnalysis(BaseModel):
    """Retell's post-call analysis block. Unknown keys are kept so the raw payload can be stored."""
    model_config = ConfigDict(extra="allow")

    custom_analysis_data: Optional[Dict[str, Any]] = None
    user_sentiment: Optional[str] = None
    call_successful: Optional[bool] = None
    in_voicemail: Optional[bool] = None
    call_summary: Optional[str] = None

    @property
    def job_type(self) -> Optional[str]:
        return (self.custom_analysis_data or {}).get("job_type") or None


class DynamicVariables(BaseModel):
    """Variables the voice agent collected during the call."""
    model_config = ConfigDict(extra="allow")

    user_name: Optional[str] = None
    validated_address: Optional[str] = None
    raw_input: Optional[str] = None
    user_email: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        # A validated address beats whatever the caller typed or said
        return self.validated_address or self.raw_input or None


class RetellCall(BaseModel):
    """One call snapshot as returned by Retell's list-calls endpoint.

    Accessors resolve each canonical field from the nested analysis/dynamic
    variable payloads first and fall back to the top-level field.
    """
    model_config = ConfigDict(extra="allow")

    call_id: str
    call_status: Optional[str] = None
    start_timestamp: Optional[Any] = None
    end_timestamp: Optional[Any] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    call_type: Optional[str] = None
    from_number: Optional[str] = None
    appointment_status: Optional[str] = None
    appointment_date: Optional[Any] = None
    appointment_time: Optional[Any] = None
    appointment_start: Optional[Any] = None
    appointment_end: Optional[Any] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None
    user_sentiment: Optional[str] = None
    call_successful: Optional[bool] = None
    in_voicemail: Optional[bool] = None
    processed: Optional[bool] = None
    created_at: Optional[Any] = None
    summary: Optional[str] = None
    quick_summary: Optional[str] = None
    job_description: Optional[str] = None
    job_type: Optional[str] = None
    manual_notes: Optional[str] = None
    email_sent: Optional[int] = None
    call_analysis: Optional[CallAnalysis] = None
    collected_dynamic_variables: Optional[DynamicVariables] = None

    @property
    def dynamic_variables(self) -> DynamicVariables:
        return self.collected_dynamic_variables or DynamicVariables()

    @property
    def analysis(self) -> CallAnalysis:
        return self.call_analysis or CallAnalysis()

    def resolved_job_type(self) -> Optional[str]:
        return self.analysis.job_type or self.job_type or None

    def resolved_client_name(self) -> Optional[str]:
        return self.dynamic_variables.user_name or self.client_name or None

    def resolved_client_address(self) -> Optional[str]:
        return self.dynamic_variables.address or self.client_address or None

    def resolved_client_email(self) -> Optional[str]:
        return self.dynamic_variables.user_email or self.client_email or None

    def resolved_user_sentiment(self) -> Optional[str]:
        return self.user_sentiment or self.analysis.user_sentiment or None

    def resolved_call_successful(self) -> Optional[bool]:
        return self.call_successful if self.call_successful is not None else self.analysis.call_successful

    def resolved_in_voicemail(self) -> Optional[bool]:
        return self.in_voicemail if self.in_voicemail is not None else self.analysis.in_voicemail

    def resolved_summary(self) -> Optional[str]:
        return self.summary or self.analysis.call_summary or None

    def raw_call_analysis(self) -> Optional[Dict[str, Any]]:
        if self.call_analysis is None:
            return None
        return self.call_analysis.model_dump(exclude_unset=True)


class CallRecord(BaseModel):
    """A stored call_logs row."""
    model_config = ConfigDict(extra="ignore")

    call_id: str
    agent_id: Optional[str] = None
    call_status: Optional[str] = None
    start_timestamp: Optional[str] = None
    end_timestamp: Optional[str] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    call_type: Optional[str] = None
    from_number: Optional[str] = None
    appointment_status: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_start: Optional[str] = None
    appointment_end: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None
    intent: Optional[str] = None
    lead_type: Optional[str] = None
    summary: Optional[str] = None
    quick_summary: Optional[str] = None
    job_description: Optional[str] = None
    job_type: Optional[str] = None
    manual_notes: Optional[str] = None
    call_analysis: Optional[Dict[str, Any]] = None
    processed: Optional[bool] = False
    email_sent: Optional[int] = 0
    gpt_status: int = GPT_PENDING
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


EXTRACTION_FIELDS = (
    "client_name", "client_email", "client_address", "appointment_date", "appointment_time",
    "summary", "quick_summary", "intent_category", "job_description", "job_type",
    "appointment_start", "appointment_end",
)


class ExtractionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_address: Optional[str] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    summary: Optional[str] = None
    quick_summary: Optional[str] = None
    intent_category: Optional[str] = None
    job_description: Optional[str] = None
    job_type: Optional[str] = None
    appointment_start: Optional[str] = None
    appointment_end: Optional[str] = None

    @field_validator(*EXTRACTION_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    @classmethod
    def parse(cls, content: Any) -> Optional["ExtractionResult"]:
        """Parse a completion body. Returns None when it is not a JSON object."""
        if isinstance(content, dict):
            data = content
        else:
            try:
                data = json.loads(content)
            except (TypeError, ValueError):
                return None
        if not isinstance(data, dict):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None


class Credentials(BaseModel):
    user_id: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.username and self.password)


class AuthToken(BaseModel):
    token: str
    user_id: Optional[str] = None
    company_id: int
    timezone: Optional[str] = None


class ManualSyncRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    call_id: str
    status: str = "pending"
    zt_booking_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SyncLogEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    call_log_id: str
    sync_status: str
    zt_booking_id: Optional[str] = None
    error_message: Optional[str] = None
    sync_date: Optional[str] = None
    updated_at: Optional[str] = None


class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address_line_one: str = Field(alias="addressLineOne")
    city: str
    state: str
    country: str
    zip_code: str = Field(alias="zipCode")


class BookingPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_booking_time: str = Field(alias="startBookingTime")
    end_booking_time: str = Field(alias="endBookingTime")
    book_date: str = Field(alias="bookDate")
    name: Optional[str] = None
    email: str
    phone_number: str = Field(alias="phoneNumber")
    address_line_one: str = Field(alias="addressLineOne")
    address_line_two: str = Field(default=" ", alias="addressLineTwo")
    city: str
    state: str
    country: str
    zip_code: str = Field(alias="zipCode")
    company_id: int = Field(alias="companyId")
    description: Optional[str] = None
    source: str = "Web"

    def to_request(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class BookingResult(BaseModel):
    success: bool
    booking_id: Optional[str] = None
    error: Optional[str] = None
    response: Optional[Any] = None


class AgentIngestResult(BaseModel):
    agent_id: str
    source: str = "retellai"
    total_fetched: int = 0
    existing_calls: int = 0
    processed: int = 0
    success: int = 0
    failed: int = 0
    error: Optional[str] = None


class IngestionSummary(BaseModel):
    agents: List[AgentIngestResult] = Field(default_factory=list)

    @property
    def total_fetched(self) -> int:
        return sum(r.total_fetched for r in self.agents)

    @property
    def total_existing(self) -> int:
        return sum(r.existing_calls for r in self.agents)

    @property
    def total_processed(self) -> int:
        return sum(r.processed for r in self.agents)

    @property
    def total_success(self) -> int:
        return sum(r.success for r in self.agents)

    @property
    def total_failed(self) -> int:
        return sum(r.failed for r in self.agents)

    def report(self) -> Dict[str, Any]:
        return {
            "total_fetched": self.total_fetched,
            "total_existing": self.total_existing,
            "total_processed": self.total_processed,
            "total_success": self.total_success,
            "total_failed": self.total_failed,
            "agents_processed": len(self.agents),
            "agents": [r.model_dump() for r in self.agents],
        }


class EnrichmentSummary(BaseModel):
    selected: int = 0
    success: int = 0
    failed: int = 0
    aborted: bool = False

    def report(self) -> Dict[str, Any]:
        return self.model_dump()


class SyncItemResult(BaseModel):
    call_id: str
    status: str
    booking_id: Optional[str] = None
    error: Optional[str] = None


class SyncSummary(BaseModel):
    items: List[SyncItemResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if item.status == "failed")

    def report(self) -> Dict[str, Any]:
        return {
            "processed": len(self.items),
            "success": self.succeeded,
            "failed": self.failed,
            "items": [item.model_dump() for item in self.items],
        }
