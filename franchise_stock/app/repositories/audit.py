import json
from typing import Any, Optional


class AuditRepository:
    def __init__(self, cur):
        self.cur = cur

    def record(
        self,
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Any,
        details: Optional[dict] = None,
    ) -> None:
        self.cur.execute(
            """
            INSERT INTO audit_logs (user_id, action, entity_type, entity_id, details)
            VALUES (%s, %s, %s, %s, %s::jsonb)
            """,
            (user_id, action, entity_type, str(entity_id), json.dumps(details or {}, default=str)),
        )
