"""
Audit sink.

State-changing operations report themselves here. Persistence of the audit
trail belongs to the log pipeline: each event is one JSON line on the
"citycup.audit" logger. Recording never raises into the caller.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

audit_logger = logging.getLogger("citycup.audit")


def record(
    admin_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    **details: Any,
) -> None:
    try:
        payload = {
            "admin_id":    admin_id,
            "action":      action,
            "entity_type": entity_type,
            "entity_id":   entity_id,
            "details":     details,
        }
        audit_logger.info(json.dumps(payload, default=str, ensure_ascii=False))
    except Exception:
        audit_logger.exception("Audit record failed for %s %s", action, entity_type)
