# tests/unit/coupons/test_verifier.py
import asyncio

from conftest import REGISTRATION_LABELS, FakeSheetReader, SleepRecorder, make_snapshot
from services.coupons.registrations import UniquenessChecker
from services.coupons.verifier import RegistrationVerifier
from services.exceptions import ReadError

EMPTY = make_snapshot(REGISTRATION_LABELS)
WITH_ROW = make_snapshot(REGISTRATION_LABELS, ["654321", "9876543210", "", "Assigned", "Gold", ""])


def verifier_for(tables):
    reader = FakeSheetReader({2: tables})
    sleep = SleepRecorder()
    verifier = RegistrationVerifier(UniquenessChecker(reader, "sheet", 2), sleep=sleep)
    return verifier, reader, sleep


def test_stops_at_first_confirmation():
    verifier, reader, sleep = verifier_for([EMPTY, EMPTY, WITH_ROW])
    assert asyncio.run(verifier.confirm("654321")) is True
    assert sleep.delays == [0.5, 1.0, 1.5]
    assert len(reader.calls) == 3


def test_exhausts_five_attempts_with_growing_delay():
    verifier, reader, sleep = verifier_for([EMPTY])
    assert asyncio.run(verifier.confirm("654321")) is False
    assert sleep.delays == [0.5, 1.0, 1.5, 2.0, 2.5]
    assert len(reader.calls) == 5


def test_read_errors_count_as_not_yet_visible():
    verifier, _, _ = verifier_for([ReadError("lag"), WITH_ROW])
    assert asyncio.run(verifier.confirm("654321")) is True
