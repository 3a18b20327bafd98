from typing import Any, Dict, Iterable, List, Optional
from copy import deepcopy
from datetime import datetime, timezone
import logging

# Thin adapter over the Supabase client. Without SUPABASE_URL an in-memory store with the same semantics is used.
from supabase import create_client, Client

from .config import Settings
from .schemas.pydantic_schemas import GPT_PENDING, GPT_PROCESSING

logger = logging.getLogger(__name__)


CALL_LOGS = "call_logs"
USER_PROFILES = "user_profiles"
CREDENTIALS = "zentrades_tokens"
SYNC_QUEUE = "zt_manual_sync"
SYNC_LOGS = "zt_sync_logs"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryDB:
    def __init__(self) -> None:
        self.user_profiles: List[Dict[str, Any]] = []
        self.credentials: List[Dict[str, Any]] = []
        self.calls: Dict[str, Dict[str, Any]] = {}
        self.sync_queue: Dict[str, Dict[str, Any]] = {}
        self.sync_logs: Dict[str, Dict[str, Any]] = {}

    # Accounts
    def list_agent_ids(self) -> List[str]:
        return [p["agent_id"] for p in self.user_profiles if p.get("agent_id")]

    def get_user_ids_for_agent(self, agent_id: str) -> List[str]:
        return [p["user_id"] for p in self.user_profiles if p.get("agent_id") == agent_id and p.get("user_id")]

    def get_agent_id_for_user(self, user_id: str) -> Optional[str]:
        for p in self.user_profiles:
            if p.get("user_id") == user_id:
                return p.get("agent_id")
        return None

    def get_credentials_for_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self.get_credentials_for_users([user_id])
        return rows[0] if rows else None

    def get_credentials_for_users(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        wanted = set(user_ids)
        return [dict(row) for row in self.credentials if row.get("user_id") in wanted]

    # Call logs
    def get_call_statuses(self, call_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        return {cid: self.calls[cid].get("call_status") for cid in call_ids if cid in self.calls}

    def upsert_calls(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            existing = self.calls.get(row["call_id"])
            if existing is None:
                stored = {"gpt_status": GPT_PENDING}
                stored.update(deepcopy(row))
                self.calls[row["call_id"]] = stored
            else:
                existing.update(deepcopy(row))

    def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        row = self.calls.get(call_id)
        return deepcopy(row) if row else None

    def get_ended_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        row = self.get_call(call_id)
        if row and row.get("call_status") == "ended":
            return row
        return None

    def list_calls_for_enrichment(self, limit: int) -> List[Dict[str, Any]]:
        items = [
            deepcopy(c) for c in self.calls.values()
            if c.get("gpt_status") == GPT_PENDING and c.get("call_status") == "ended" and c.get("transcript") is not None
        ]
        return items[:limit]

    def mark_calls_processing(self, call_ids: List[str]) -> None:
        for cid in call_ids:
            if cid in self.calls:
                self.calls[cid].update({"gpt_status": GPT_PROCESSING, "updated_at": _now()})

    def update_call(self, call_id: str, updates: Dict[str, Any]) -> None:
        if call_id in self.calls:
            self.calls[call_id].update(deepcopy(updates))

    def set_gpt_status(self, call_id: str, status: int) -> None:
        self.update_call(call_id, {"gpt_status": status, "updated_at": _now()})

    # Manual sync queue
    def list_pending_sync_requests(self, limit: int) -> List[Dict[str, Any]]:
        pending = [dict(r) for r in self.sync_queue.values() if r.get("status") == "pending"]
        pending.sort(key=lambda r: r.get("created_at") or "")
        return pending[:limit]

    def get_sync_request(self, call_id: str) -> Optional[Dict[str, Any]]:
        row = self.sync_queue.get(call_id)
        return dict(row) if row else None

    def update_sync_request(self, call_id: str, updates: Dict[str, Any]) -> None:
        if call_id in self.sync_queue:
            self.sync_queue[call_id].update(updates)

    # Sync audit log
    def upsert_sync_log(self, entry: Dict[str, Any]) -> None:
        key = entry["call_log_id"]
        current = self.sync_logs.setdefault(key, {})
        current.update(entry)

    def get_sync_log(self, call_log_id: str) -> Optional[Dict[str, Any]]:
        row = self.sync_logs.get(call_log_id)
        return dict(row) if row else None


class SupabaseDB:
    def __init__(self, client: Client) -> None:
        self.client = client

    # Accounts
    def list_agent_ids(self) -> List[str]:
        res = self.client.table(USER_PROFILES).select("agent_id").not_.is_("agent_id", "null").execute()
        return [row["agent_id"] for row in (res.data or []) if row.get("agent_id")]

    def get_user_ids_for_agent(self, agent_id: str) -> List[str]:
        res = self.client.table(USER_PROFILES).select("user_id").eq("agent_id", agent_id).execute()
        return [row["user_id"] for row in (res.data or []) if row.get("user_id")]

    def get_agent_id_for_user(self, user_id: str) -> Optional[str]:
        res = self.client.table(USER_PROFILES).select("agent_id").eq("user_id", user_id).limit(1).execute()
        return (res.data[0].get("agent_id") if res.data else None)

    def get_credentials_for_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table(CREDENTIALS).select("user_id, username, password").eq("user_id", user_id).limit(1).execute()
        return (res.data or [None])[0]

    def get_credentials_for_users(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(user_ids)
        if not ids:
            return []
        res = self.client.table(CREDENTIALS).select("user_id, username, password").in_("user_id", ids).execute()
        return res.data or []

    # Call logs
    def get_call_statuses(self, call_ids: Iterable[str]) -> Dict[str, Optional[str]]:
        ids = list(call_ids)
        if not ids:
            return {}
        res = self.client.table(CALL_LOGS).select("call_id, call_status").in_("call_id", ids).execute()
        return {row["call_id"]: row.get("call_status") for row in (res.data or [])}

    def upsert_calls(self, rows: List[Dict[str, Any]]) -> None:
        self.client.table(CALL_LOGS).upsert(rows, on_conflict="call_id").execute()

    def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table(CALL_LOGS).select("*").eq("call_id", call_id).limit(1).execute()
        return (res.data or [None])[0]

    def get_ended_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table(CALL_LOGS).select("*").eq("call_id", call_id).eq("call_status", "ended").limit(1).execute()
        return (res.data or [None])[0]

    def list_calls_for_enrichment(self, limit: int) -> List[Dict[str, Any]]:
        res = (
            self.client.table(CALL_LOGS)
            .select("*")
            .eq("gpt_status", GPT_PENDING)
            .eq("call_status", "ended")
            .not_.is_("transcript", "null")
            .limit(limit)
            .execute()
        )
        return res.data or []

    def mark_calls_processing(self, call_ids: List[str]) -> None:
        self.client.table(CALL_LOGS).update({"gpt_status": GPT_PROCESSING, "updated_at": _now()}).in_("call_id", call_ids).execute()

    def update_call(self, call_id: str, updates: Dict[str, Any]) -> None:
        self.client.table(CALL_LOGS).update(updates).eq("call_id", call_id).execute()

    def set_gpt_status(self, call_id: str, status: int) -> None:
        self.update_call(call_id, {"gpt_status": status, "updated_at": _now()})

    # Manual sync queue
    def list_pending_sync_requests(self, limit: int) -> List[Dict[str, Any]]:
        res = (
            self.client.table(SYNC_QUEUE)
            .select("*")
            .eq("status", "pending")
            .order("created_at", desc=False)
            .limit(limit)
            .execute()
        )
        return res.data or []

    def get_sync_request(self, call_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table(SYNC_QUEUE).select("*").eq("call_id", call_id).limit(1).execute()
        return (res.data or [None])[0]

    def update_sync_request(self, call_id: str, updates: Dict[str, Any]) -> None:
        self.client.table(SYNC_QUEUE).update(updates).eq("call_id", call_id).execute()

    # Sync audit log; call_log_id carries a unique constraint so this is a single atomic upsert
    def upsert_sync_log(self, entry: Dict[str, Any]) -> None:
        self.client.table(SYNC_LOGS).upsert(entry, on_conflict="call_log_id").execute()

    def get_sync_log(self, call_log_id: str) -> Optional[Dict[str, Any]]:
        res = self.client.table(SYNC_LOGS).select("*").eq("call_log_id", call_log_id).limit(1).execute()
        return (res.data or [None])[0]


_client: Optional[Client] = None
_db_instance: Optional[Any] = None


def get_db(settings: Settings):
    global _client, _db_instance

    if settings.supabase_configured:
        if _client is None:
            _client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        if _db_instance is None or not isinstance(_db_instance, SupabaseDB):
            _db_instance = SupabaseDB(_client)
        return _db_instance
    if _db_instance is None or not isinstance(_db_instance, InMemoryDB):
        logger.warning("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY not set; using in-memory store")
        _db_instance = InMemoryDB()
    return _db_instance
