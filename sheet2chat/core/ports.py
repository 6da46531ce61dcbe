# sheet2chat/core/ports.py
from __future__ import annotations
from datetime import datetime
from typing import Protocol, Optional, Any, Sequence

from sheet2chat.core.domain import TenantConfig


# ============================================================================
# REMOTE COLLABORATORS (all calls are async I/O and may raise)
# ============================================================================

class ChatClient(Protocol):
    async def send_message(self, token: str, room_id: str, body: str) -> dict: ...

    async def create_task(
        self,
        token: str,
        room_id: str,
        body: str,
        assignee_ids: Sequence[str],
        due_at: Optional[datetime] = None,
        due_type: str = "date",
    ) -> dict: ...

    async def get_room_members(self, token: str, room_id: str) -> list[dict]: ...


class SheetsClient(Protocol):
    async def read_range(self, sheet_id: str, a1_range: str) -> list[list[str]]: ...

    async def write_cell(self, sheet_id: str, sheet_name: str, row: int, col: int, value: Any) -> None: ...

    async def append_row(self, sheet_id: str, sheet_name: str, values: Sequence[Any]) -> dict: ...


class ConfigStore(Protocol):
    async def get_config(self, promotion_id: str) -> Optional[TenantConfig]: ...

    async def list_tenants(self) -> list[dict]:
        """
        Returns ``[{"id": str, "name": str, "updated_at": datetime | None}, ...]``
        in a stable order (ties in tenant resolution are broken by this order).
        """
        ...

    async def save_config(self, promotion_id: str, partial: dict) -> TenantConfig: ...
