# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sheet2chat.config import Settings  # noqa: E402
from sheet2chat.core.dispatcher import Dispatcher  # noqa: E402
from sheet2chat.core.error_reporter import ErrorReporter  # noqa: E402
from sheet2chat.core.handlers import ConsultationHandler, ReminderHandler, UniversalHandler  # noqa: E402
from sheet2chat.core.tenant_defaults import resolve_tenant_defaults  # noqa: E402
from sheet2chat.core.tenant_resolver import TenantResolver  # noqa: E402
from sheet2chat.core.use_cases import NotificationEngine  # noqa: E402

ADMIN_TOKEN = "admin-token"
ADMIN_ROOM = "999"


def make_settings(**overrides) -> Settings:
    """Settings isolated from .env, with an admin channel configured."""
    values = {
        "admin_chatwork_token": ADMIN_TOKEN,
        "admin_room_id": ADMIN_ROOM,
        "viewer_base_url": "https://viewer.example.com",
        "viewer_url_salt": "salt",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_config(promotion_id: str = "promo_a", settings: Settings | None = None, **raw):
    """TenantConfig from a camelCase document."""
    document = {"chatworkToken": "cw-token", "roomId": "100", "spreadsheetId": "sheet-1"}
    document.update(raw)
    return resolve_tenant_defaults(promotion_id, document, settings or make_settings())


class FakeChat:
    """Chat client double; every call is an AsyncMock."""

    def __init__(self):
        self.send_message = AsyncMock(return_value={"message_id": "m-1"})
        self.create_task = AsyncMock(return_value={"task_ids": [501]})
        self.get_room_members = AsyncMock(return_value=[])

    def bodies_to(self, room_id: str) -> list[str]:
        """Message bodies sent to one room, in order."""
        return [c.args[2] for c in self.send_message.call_args_list if c.args[1] == room_id]

    def admin_reports(self) -> list[str]:
        return self.bodies_to(ADMIN_ROOM)


class FakeSheets:
    """Sheets client double backed by a dict of ``"Sheet!A:Z" -> rows``."""

    def __init__(self, ranges: dict | None = None):
        self.ranges = dict(ranges or {})
        self.read_range = AsyncMock(side_effect=self._read)
        self.write_cell = AsyncMock(return_value=None)
        self.append_row = AsyncMock(return_value={"updatedRange": "Sheet!A2:O2"})

    async def _read(self, sheet_id, a1_range):
        value = self.ranges.get(a1_range, [])
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def sheets():
    return FakeSheets()


@pytest.fixture
def reporter(chat, settings):
    return ErrorReporter(chat, settings)


def make_engine(store, chat, sheets, settings=None, clock=None):
    """NotificationEngine wired to doubles; ``clock`` pins "now" for reminders and tasks."""
    settings = settings or make_settings()
    tz = ZoneInfo(settings.local_timezone)
    reporter = ErrorReporter(chat, settings, store)
    return NotificationEngine(
        resolver=TenantResolver(store, settings),
        reporter=reporter,
        universal=UniversalHandler(Dispatcher(chat, reporter, tz, clock=clock), reporter),
        consultation=ConsultationHandler(chat, sheets, reporter, settings),
        reminder=ReminderHandler(chat, sheets, reporter, tz, clock=clock),
    )
