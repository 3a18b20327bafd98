from typing import List, Mapping, Optional, Sequence
import logging

from ..schemas.pydantic_schemas import RetellCall

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = frozenset({"ended", "failed"})


def is_terminal(call_status: Optional[str]) -> bool:
    return call_status in TERMINAL_STATUSES


def filter_calls_for_processing(calls: Sequence[RetellCall], existing: Mapping[str, Optional[str]]) -> List[RetellCall]:
    """Return the calls that must be (re)written, in input order.

    ``existing`` maps stored call_id -> stored call_status. New calls and calls
    stored with a non-terminal status pass; stored ended/failed calls are
    never re-ingested, whatever the fresh snapshot says.
    """
    to_process = []
    for call in calls:
        if call.call_id not in existing:
            to_process.append(call)
        elif not is_terminal(existing[call.call_id]):
            to_process.append(call)
    logger.info(f"{len(to_process)} calls need processing out of {len(calls)} total calls")
    return to_process
