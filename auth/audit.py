"""
auth/audit.py -- Tamper-evident audit trail for every auth decision.

Policy: act, then log. The entry is written after the guarded action has
succeeded or failed and carries that outcome, so the log reflects what
happened rather than what was attempted.

record() never raises. A failed write is logged at ERROR on "warden.audit"
(which operational monitoring alerts on) and the request carries on -- a
broken audit sink must not take login down with it. Entries are never
updated or deleted by the application; AuditStore has no method to do so.

Timestamps and ids are assigned here, from the server clock. Nothing the
client sends can set them.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from auth.models import AuditLogEntry, ClientInfo
from auth.store import AuditStore

logger = logging.getLogger("warden.audit")

ANONYMOUS = "anonymous"
SUCCESS = "success"
FAILURE = "failure"


@dataclass(frozen=True)
class AuditContext:
    ip: str = ""
    user_agent: str = ""
    session_id: str | None = None

    @classmethod
    def from_client(cls, client: ClientInfo, session_id: str | None = None) -> AuditContext:
        return cls(ip=client.ip, user_agent=client.user_agent, session_id=session_id)


class AuditLogger:
    def __init__(self, store: AuditStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    def record(
        self,
        actor_id: str | None,
        action: str,
        resource_type: str,
        *,
        outcome: str,
        resource_id: str | None = None,
        detail: dict[str, Any] | None = None,
        context: AuditContext | None = None,
        suspicious: bool = False,
    ) -> AuditLogEntry | None:
        """Write one entry. Returns it, or None if the write failed."""
        context = context or AuditContext()
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            actor_id=actor_id or ANONYMOUS,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            outcome=outcome,
            detail=dict(detail or {}),
            suspicious=suspicious,
            ip=context.ip,
            user_agent=context.user_agent,
            session_id=context.session_id,
            timestamp=datetime.fromtimestamp(self.clock(), timezone.utc).isoformat(),
        )
        try:
            self.store.append(entry)
        except Exception:
            logger.exception("Audit write failed for action=%s actor=%s outcome=%s", action, entry.actor_id, outcome)
            return None
        if suspicious:
            logger.warning("Suspicious event recorded: action=%s actor=%s", action, entry.actor_id)
        return entry

    def recent(self, limit: int = 100, actor_id: str | None = None, action: str | None = None) -> list[AuditLogEntry]:
        return self.store.recent(limit=limit, actor_id=actor_id, action=action)


# ---------------------------------------------------------------------------
# CSV export
#
# User agents and detail values are attacker-controlled. Spreadsheet apps run
# cells starting with =, +, - or @ as formulas (CWE-1236), so such cells are
# prefixed with a tab, which makes them plain text.
# ---------------------------------------------------------------------------

CSV_COLUMNS = [
    "timestamp",
    "id",
    "actor_id",
    "action",
    "resource_type",
    "resource_id",
    "outcome",
    "suspicious",
    "ip",
    "user_agent",
    "session_id",
    "detail",
]

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_csv_cell(value: Any) -> str:
    text = "" if value is None else str(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def entries_to_csv(entries: Iterable[AuditLogEntry]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_COLUMNS)
    for e in entries:
        writer.writerow(
            [
                _sanitize_csv_cell(v)
                for v in (
                    e.timestamp,
                    e.id,
                    e.actor_id,
                    e.action,
                    e.resource_type,
                    e.resource_id,
                    e.outcome,
                    e.suspicious,
                    e.ip,
                    e.user_agent,
                    e.session_id,
                    json.dumps(e.detail, sort_keys=True),
                )
            ]
        )
    return buf.getvalue()
