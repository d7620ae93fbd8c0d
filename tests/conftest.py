import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app import create_app
from services.coupons.orchestrator import RegistrationOrchestrator
from services.coupons.settings import CouponSettings
from services.coupons.snapshot import TableSnapshot

VALID_CODES_GID = 0
OFFERS_GID = 11
REGISTRATIONS_GID = 22
SHEET_ID = "sheet-123"

OFFER_LABELS = ["Type", "Status", "Start Date", "End Date", "Qr Codes"]
REGISTRATION_LABELS = ["QR Code", "Mobile", "Name", "Status", "OfferType", "RegisteredDate"]


def make_snapshot(labels, *rows):
    """
    Build a TableSnapshot from positional rows.

    Args:
        labels (list): Column labels.
        rows (tuple): Each row is a list of cell strings in label order.
    """
    return TableSnapshot(labels=list(labels), rows=[dict(zip(labels, row)) for row in rows])


class FakeSheetReader:
    """
    Stands in for TableSnapshotReader.

    `tables` maps gid -> TableSnapshot, an exception to raise, or a list of
    those consumed one per read (the last entry repeats).
    """

    def __init__(self, tables=None):
        self.tables = dict(tables or {})
        self.calls = []
        self.gate = None  # optional asyncio.Event every read waits on

    async def read(self, sheet_id, gid):
        self.calls.append(gid)
        if self.gate is not None:
            await self.gate.wait()
        entry = self.tables[gid]
        if isinstance(entry, list):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, Exception):
            raise entry
        return entry


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return CouponSettings(
        script_url="https://script.example.com/exec",
        sheet_id=SHEET_ID,
        offers_gid=OFFERS_GID,
        registrations_gid=REGISTRATIONS_GID,
        valid_codes_gid=VALID_CODES_GID,
    )


@pytest.fixture
def write_client():
    """requests stand-in whose POST answers like the Apps Script web app."""
    client = MagicMock()
    client.post.return_value.json.return_value = {"success": True}
    client.post.return_value.status_code = 200
    return client


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def sheet_tables():
    """Master list, one active offer and an empty registrations tab."""
    return {
        VALID_CODES_GID: make_snapshot(["QR Code"], ["654321"], ["123456"], ["111111"]),
        OFFERS_GID: make_snapshot(
            OFFER_LABELS,
            ["Diwali", "Active", "1-6-2025", "30-6-2025", "654321, 123456"],
        ),
        REGISTRATIONS_GID: make_snapshot(REGISTRATION_LABELS),
    }


@pytest.fixture
def make_orchestrator(settings, write_client, sleep_recorder, fixed_now):
    def _make(tables):
        reader = FakeSheetReader(tables)
        orchestrator = RegistrationOrchestrator.from_settings(
            settings,
            reader=reader,
            http_client=write_client,
            sleep=sleep_recorder,
            clock=lambda: fixed_now,
        )
        return orchestrator, reader
    return _make


@pytest.fixture
def app():
    app = create_app('Testing')
    yield app


@pytest.fixture
def client(app):
    return app.test_client()
