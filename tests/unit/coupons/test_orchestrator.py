# tests/unit/coupons/test_orchestrator.py
import asyncio

import pytest

from conftest import (
    OFFER_LABELS,
    OFFERS_GID,
    REGISTRATION_LABELS,
    REGISTRATIONS_GID,
    VALID_CODES_GID,
    make_snapshot,
)
from services.coupons.orchestrator import (
    FailureReason,
    RegistrationState,
    validate_submission,
)
from services.exceptions import FormatError, ReadError

EMPTY_REGISTRATIONS = make_snapshot(REGISTRATION_LABELS)


def registered(code="654321", mobile="9876543210", name="Asha"):
    return make_snapshot(REGISTRATION_LABELS, [code, mobile, name, "Assigned", "Diwali", "2025-06-01T00:00:00.000Z"])


class TestValidateSubmission:
    @pytest.mark.parametrize("code,mobile,name,key", [
        ("", "9876543210", "", "requiredError"),
        ("654321", "", "", "requiredError"),
        ("12345", "9876543210", "", "codeLengthError"),
        ("65432a", "9876543210", "", "codeLengthError"),
        ("654321", "987654321", "", "mobileLengthError"),
        ("654321", "9876543210", "Asha 2", "nameFormatError"),
    ])
    def test_rejects_bad_shapes(self, code, mobile, name, key):
        with pytest.raises(FormatError) as exc:
            validate_submission(code, mobile, name)
        assert exc.value.message_key == key
        assert exc.value.reason is FailureReason.INVALID_FORMAT

    def test_accepts_optional_name(self):
        assert validate_submission(" 654321", "9876543210 ", "") == ("654321", "9876543210", "")
        assert validate_submission("654321", "9876543210", "Asha Devi")[2] == "Asha Devi"


class TestRegistrationOrchestrator:
    def test_happy_path_writes_then_confirms(self, make_orchestrator, sheet_tables, write_client, sleep_recorder):
        sheet_tables[REGISTRATIONS_GID] = [EMPTY_REGISTRATIONS] * 4 + [registered()]
        orchestrator, reader = make_orchestrator(sheet_tables)

        outcome = asyncio.run(orchestrator.register("654321", "9876543210", "Asha"))

        assert outcome.state is RegistrationState.SUCCEEDED
        assert outcome.message_key == "successMessage"
        assert outcome.record.offer_type == "Diwali"
        assert outcome.record.registered_date == "2025-06-15T12:00:00.000Z"
        assert orchestrator.state is RegistrationState.SUCCEEDED

        body = write_client.post.call_args.kwargs["json"]
        assert body["action"] == "append"
        assert body["gid"] == REGISTRATIONS_GID
        assert body["headers"] == REGISTRATION_LABELS
        assert body["data"] == [["654321", "9876543210", "Asha", "Assigned", "Diwali", "2025-06-15T12:00:00.000Z"]]
        # two polls: the first still sees the old snapshot
        assert sleep_recorder.delays == [0.5, 1.0]
        assert reader.calls[:3] == [VALID_CODES_GID, OFFERS_GID, REGISTRATIONS_GID]

    def test_write_headers_follow_sheet_spelling(self, make_orchestrator, sheet_tables, write_client):
        labels = ["qr code", "MOBILE", "Name", "Status", "Offer Type", "Registered_Date"]
        existing = make_snapshot(labels, ["111111", "9000000000", "", "Assigned", "Gold", ""])
        confirmed = make_snapshot(labels, ["111111", "9000000000", "", "Assigned", "Gold", ""],
                                  ["654321", "9876543210", "", "Assigned", "Diwali", ""])
        sheet_tables[REGISTRATIONS_GID] = [existing] * 3 + [confirmed]
        orchestrator, _ = make_orchestrator(sheet_tables)

        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))

        assert outcome.succeeded
        assert write_client.post.call_args.kwargs["json"]["headers"] == [
            "qr code", "MOBILE", "Name", "Status", "Offer Type", "RegisteredDate",
        ]

    def test_format_error_makes_no_network_call(self, make_orchestrator, sheet_tables, write_client):
        orchestrator, reader = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("12345", "9876543210"))
        assert outcome.state is RegistrationState.FAILED
        assert outcome.reason is FailureReason.INVALID_FORMAT
        assert reader.calls == []
        write_client.post.assert_not_called()

    def test_unknown_code_stops_before_other_checks(self, make_orchestrator, sheet_tables, write_client):
        orchestrator, reader = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("999999", "9876543210"))
        assert outcome.state is RegistrationState.FAILED
        assert outcome.reason is FailureReason.CODE_NOT_FOUND
        assert outcome.message_key == "invalidQrError"
        assert reader.calls == [VALID_CODES_GID]
        write_client.post.assert_not_called()

    def test_unreadable_master_list_rejects(self, make_orchestrator, sheet_tables):
        sheet_tables[VALID_CODES_GID] = ReadError("down")
        orchestrator, _ = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.reason is FailureReason.CODE_NOT_FOUND

    def test_ineligible_offer(self, make_orchestrator, sheet_tables, write_client):
        sheet_tables[OFFERS_GID] = make_snapshot(OFFER_LABELS, ["Diwali", "Inactive", "", "", "654321"])
        orchestrator, reader = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.reason is FailureReason.OFFER_INELIGIBLE
        assert outcome.message_key == "offerInactiveError"
        assert REGISTRATIONS_GID not in reader.calls
        write_client.post.assert_not_called()

    def test_duplicate_code_never_writes(self, make_orchestrator, sheet_tables, write_client):
        sheet_tables[REGISTRATIONS_GID] = registered(mobile="9000000000")
        orchestrator, _ = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.state is RegistrationState.FAILED
        assert outcome.reason is FailureReason.DUPLICATE_CODE
        assert outcome.message_key == "duplicateQrError"
        write_client.post.assert_not_called()

    def test_duplicate_mobile_never_writes(self, make_orchestrator, sheet_tables, write_client):
        sheet_tables[REGISTRATIONS_GID] = registered(code="123456")
        orchestrator, _ = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.reason is FailureReason.DUPLICATE_MOBILE
        assert outcome.message_key == "duplicateMobileError"
        write_client.post.assert_not_called()

    def test_write_failure(self, make_orchestrator, sheet_tables, write_client, sleep_recorder):
        write_client.post.return_value.json.return_value = {"success": False, "error": "Sheet locked"}
        orchestrator, _ = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.state is RegistrationState.FAILED
        assert outcome.reason is FailureReason.WRITE_FAILED
        assert outcome.message_key == "submitError"
        assert outcome.detail == "Sheet locked"
        assert sleep_recorder.delays == []

    def test_unconfirmed_write_is_ambiguous_and_not_resubmitted(self, make_orchestrator, sheet_tables,
                                                                write_client, sleep_recorder):
        orchestrator, _ = make_orchestrator(sheet_tables)
        outcome = asyncio.run(orchestrator.register("654321", "9876543210"))
        assert outcome.state is RegistrationState.AMBIGUOUS
        assert outcome.reason is FailureReason.UNVERIFIED
        assert outcome.message_key == "unverifiedError"
        assert len(sleep_recorder.delays) == 5
        assert write_client.post.call_count == 1

    def test_second_concurrent_registration_is_turned_away(self, make_orchestrator, sheet_tables, write_client):
        orchestrator, reader = make_orchestrator(sheet_tables)

        async def scenario():
            reader.gate = asyncio.Event()
            first = asyncio.create_task(orchestrator.register("654321", "9876543210"))
            while not reader.calls:
                await asyncio.sleep(0)
            assert orchestrator.in_flight
            second = await orchestrator.register("123456", "9000000000")
            reader.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())
        assert second.state is RegistrationState.FAILED
        assert second.reason is FailureReason.BUSY
        assert first.state is RegistrationState.AMBIGUOUS
        assert reader.calls.count(VALID_CODES_GID) == 1
        assert not orchestrator.in_flight

    def test_other_clients_are_not_turned_away(self, make_orchestrator, sheet_tables):
        orchestrator, reader = make_orchestrator(sheet_tables)

        async def scenario():
            reader.gate = asyncio.Event()
            first = asyncio.create_task(orchestrator.register("654321", "9876543210", client="counter-1"))
            while not reader.calls:
                await asyncio.sleep(0)
            assert orchestrator.is_in_flight("counter-1")
            assert not orchestrator.is_in_flight("counter-2")
            repeat = await orchestrator.register("654321", "9876543210", client="counter-1")
            second = asyncio.create_task(orchestrator.register("123456", "9000000000", client="counter-2"))
            while len(reader.calls) < 2:
                await asyncio.sleep(0)
            reader.gate.set()
            return repeat, await first, await second

        repeat, first, second = asyncio.run(scenario())
        assert repeat.reason is FailureReason.BUSY
        assert first.reason is not FailureReason.BUSY
        assert second.reason is not FailureReason.BUSY
        assert reader.calls.count(VALID_CODES_GID) == 2
        assert not orchestrator.in_flight
