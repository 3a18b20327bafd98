"""Manual booking sync.

Drains the ``zt_manual_sync`` queue one item at a time: load the ended call,
authenticate as the owning account, validate, create the booking, and record
the outcome. Every terminal outcome is written to the ``zt_sync_logs`` audit
row before the queue row changes status.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging
import re

from ..config import Settings
from ..schemas.pydantic_schemas import (
    AuthToken,
    BookingPayload,
    CallRecord,
    Credentials,
    ManualSyncRequest,
    SyncItemResult,
    SyncLogEntry,
    SyncSummary,
)
from .normalizer import PHONE_PLACEHOLDER, clean_email, format_phone, is_missing_address, parse_address, to_iso_z
from .zentrades_client import ZenTradesClient

logger = logging.getLogger(__name__)


DEFAULT_APPOINTMENT_TIME = time(6, 30)
APPOINTMENT_DURATION = timedelta(minutes=60)

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"

_MISSING_TEXT = {"", "null", "not mentioned"}
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class SyncError(Exception):
    pass


def _is_blank(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() in _MISSING_TEXT


def _parse_date(value: Optional[str]) -> Optional[date]:
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        return None


def _parse_time(value: Optional[str]) -> Optional[time]:
    match = _TIME_RE.match((value or "").strip())
    if not match:
        return None
    hour, minute, second = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)
    try:
        return time(hour, minute, second)
    except ValueError:
        return None


def _zone(timezone_name: Optional[str]) -> Optional[ZoneInfo]:
    if not timezone_name:
        return None
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"Unknown timezone {timezone_name!r}; treating as UTC")
        return None


def timezone_offset_minutes(timezone_name: Optional[str], wall_clock: datetime) -> int:
    """Offset from UTC, in minutes, that ``timezone_name`` has at the given wall-clock time.

    Unknown or missing timezones have an offset of 0.
    """
    zone = _zone(timezone_name)
    if zone is None:
        return 0
    offset = wall_clock.replace(tzinfo=zone).utcoffset() or timedelta(0)
    return int(offset.total_seconds() // 60)


def wall_clock_to_utc(day: date, at: time, timezone_name: Optional[str]) -> datetime:
    """Interpret ``day`` + ``at`` as wall-clock time in the company's timezone and return the UTC instant."""
    wall_clock = datetime.combine(day, at)
    offset = timezone_offset_minutes(timezone_name, wall_clock)
    return (wall_clock - timedelta(minutes=offset)).replace(tzinfo=timezone.utc)


def resolve_appointment_window(lead: CallRecord, timezone_name: Optional[str], now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return (start, end) in UTC.

    Priority: explicit start time + date, then date at the default time of
    day, then today at the default time of day.
    """
    day = _parse_date(lead.appointment_date) if not _is_blank(lead.appointment_date) else None
    start_time = _parse_time(lead.appointment_start) if lead.appointment_start else None

    if lead.appointment_start and day is not None:
        if start_time is None:
            raise ValueError(f"Invalid appointment start time: {lead.appointment_start}")
        start = wall_clock_to_utc(day, start_time, timezone_name)
    elif day is not None:
        start = wall_clock_to_utc(day, DEFAULT_APPOINTMENT_TIME, timezone_name)
    else:
        now = now or datetime.now(timezone.utc)
        zone = _zone(timezone_name)
        today = now.astimezone(zone).date() if zone else now.astimezone(timezone.utc).date()
        start = wall_clock_to_utc(today, DEFAULT_APPOINTMENT_TIME, timezone_name)
    return start, start + APPOINTMENT_DURATION


def validate_lead(lead: CallRecord, timezone_name: Optional[str] = None, now: Optional[datetime] = None) -> List[str]:
    """Return the reasons the lead can't be booked; empty when it can."""
    now = now or datetime.now(timezone.utc)
    errors: List[str] = []

    if _is_blank(lead.client_email) or not clean_email(lead.client_email):
        errors.append("Missing or invalid email address")

    if _is_blank(lead.from_number):
        errors.append("Missing phone number")
    elif format_phone(lead.from_number) == PHONE_PLACEHOLDER:
        errors.append("Invalid phone number")

    if is_missing_address(lead.client_address):
        errors.append("Missing address")

    has_date = not _is_blank(lead.appointment_date)
    if lead.appointment_start and lead.appointment_end and has_date:
        day = _parse_date(lead.appointment_date)
        start_time = _parse_time(lead.appointment_start)
        end_time = _parse_time(lead.appointment_end)
        if day is None or start_time is None or end_time is None:
            errors.append("Invalid appointment date/time")
        else:
            start = wall_clock_to_utc(day, start_time, timezone_name)
            end = wall_clock_to_utc(day, end_time, timezone_name)
            if start <= now:
                errors.append("Appointment start time must be in the future")
            if end <= start:
                errors.append("Appointment end time must be after start time")
    elif has_date:
        day = _parse_date(lead.appointment_date)
        # a start time alone still decides the booking instant
        if day is None or (lead.appointment_start and _parse_time(lead.appointment_start) is None):
            errors.append("Invalid appointment date/time")
        elif wall_clock_to_utc(day, time(0, 0), timezone_name) <= now:
            errors.append("Appointment date must be in the future")
    return errors


def build_booking_payload(lead: CallRecord, company_id: int, timezone_name: Optional[str] = None, now: Optional[datetime] = None) -> BookingPayload:
    email = clean_email(lead.client_email)
    # validate_lead rejects these first
    if not email:
        raise ValueError("Email is required for booking")

    start, end = resolve_appointment_window(lead, timezone_name, now)
    address = parse_address(lead.client_address)
    return BookingPayload(
        start_booking_time=to_iso_z(start),
        end_booking_time=to_iso_z(end),
        book_date=to_iso_z(start),
        name=lead.client_name,
        email=email,
        phone_number=format_phone(lead.from_number),
        address_line_one=address.address_line_one,
        city=address.city,
        state=address.state,
        country=address.country,
        zip_code=address.zip_code,
        company_id=company_id,
        description=lead.job_description,
    )


class BookingSyncEngine:
    def __init__(self, db, zentrades: ZenTradesClient, settings: Settings) -> None:
        self.db = db
        self.zentrades = zentrades
        self.limit = settings.sync_batch_limit

    async def resolve_token_for_agent(self, agent_id: Optional[str]) -> AuthToken:
        if not agent_id:
            raise SyncError("agent_id is required to resolve credentials")
        user_ids = self.db.get_user_ids_for_agent(agent_id)
        if not user_ids:
            raise SyncError(f"No user_ids mapped for agent_id={agent_id}")

        rows = [Credentials.model_validate(r) for r in self.db.get_credentials_for_users(user_ids)]
        if not rows:
            raise SyncError(f"No credentials row for agent_id={agent_id}")
        chosen = next((r for r in rows if r.complete), rows[0])
        if not chosen.user_id:
            raise SyncError(f"Invalid credentials entry for agent_id={agent_id}")
        return await self.zentrades.authenticate(chosen)

    async def resolve_token_for_user(self, user_id: str) -> AuthToken:
        if not user_id:
            raise SyncError("user_id is required to resolve credentials")
        row = self.db.get_credentials_for_user(user_id)
        if not row:
            raise SyncError(f"No credentials row for user_id={user_id}")
        return await self.zentrades.authenticate(Credentials.model_validate(row))

    def log_attempt(self, call_id: str, status: str, booking_id: Optional[str] = None, error: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc).isoformat()
        entry = SyncLogEntry(
            call_log_id=call_id,
            zt_booking_id=booking_id,
            sync_status=status,
            error_message=(error or "Unknown error") if status == FAILED else None,
            sync_date=now,
            updated_at=now,
        )
        self.db.upsert_sync_log(entry.model_dump())

    def transition(self, call_id: str, status: str, booking_id: Optional[str] = None, error: Optional[str] = None) -> None:
        request = ManualSyncRequest(
            call_id=call_id,
            status=status,
            zt_booking_id=booking_id,
            error_message=error,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )
        # the booking id is only recorded on success
        fields = {"status", "error_message", "updated_at"}
        if status == SUCCESS:
            fields.add("zt_booking_id")
        self.db.update_sync_request(call_id, request.model_dump(include=fields))

    def finish(self, call_id: str, status: str, booking_id: Optional[str] = None, error: Optional[str] = None) -> SyncItemResult:
        """Record a terminal outcome: audit row first, then the queue row.

        A failing queue update leaves the audit row as the record of the attempt.
        """
        self.log_attempt(call_id, status, booking_id=booking_id, error=error)
        try:
            self.transition(call_id, status, booking_id=booking_id, error=error)
        except Exception:
            logger.exception(f"Audit recorded {status} for {call_id} but the queue update failed")
        return SyncItemResult(call_id=call_id, status=status, booking_id=booking_id, error=error)

    async def sync_one(self, call_id: str) -> SyncItemResult:
        row = self.db.get_ended_call(call_id)
        if not row:
            raise SyncError(f"Lead not found: {call_id}")
        lead = CallRecord.model_validate(row)

        auth = await self.resolve_token_for_agent(lead.agent_id)

        errors = validate_lead(lead, auth.timezone)
        if errors:
            message = f"Validation failed: {', '.join(errors)}"
            logger.info(f"Manual sync rejected {call_id}: {message}")
            return self.finish(call_id, FAILED, error=message)

        self.log_attempt(call_id, PENDING)
        payload = build_booking_payload(lead, auth.company_id, auth.timezone)
        result = await self.zentrades.create_booking(auth.token, payload)

        if result.success:
            logger.info(f"Manual synced: {call_id} (booking {result.booking_id})")
            return self.finish(call_id, SUCCESS, booking_id=result.booking_id)

        logger.info(f"Manual failed: {call_id}: {result.error}")
        return self.finish(call_id, FAILED, error=result.error or "Unknown error")

    async def run(self) -> SyncSummary:
        """Process up to ``limit`` oldest pending requests, strictly one after another."""
        logger.info("Checking for pending manual sync items...")
        requests = [ManualSyncRequest.model_validate(row) for row in self.db.list_pending_sync_requests(self.limit)]
        summary = SyncSummary()
        if not requests:
            logger.info("No manual items to process")
            return summary
        logger.info(f"Found {len(requests)} pending manual sync items")

        for request in requests:
            call_id = request.call_id
            try:
                item = await self.sync_one(call_id)
            except Exception as e:
                logger.exception(f"Manual error: {call_id}")
                item = SyncItemResult(call_id=call_id, status=FAILED, error=str(e))
                try:
                    self.finish(call_id, FAILED, error=str(e))
                except Exception:
                    logger.exception(f"Could not record failure for {call_id}")
            summary.items.append(item)

        logger.info(f"Manual sync complete: {summary.succeeded} success, {summary.failed} failed")
        return summary
