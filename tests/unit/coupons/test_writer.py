# tests/unit/coupons/test_writer.py
import asyncio
import json
from unittest.mock import MagicMock

import pytest
import requests

from services.coupons.writer import RegistrationWriter, WriteMode, WriteResult

HEADERS = ["QR Code", "Mobile"]
ROW = ["654321", "9876543210"]


def http_answering(body=None, json_error=None):
    client = MagicMock()
    response = client.post.return_value
    response.status_code = 200
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = body
    return client


class TestVerifiableMode:
    def test_success_is_read_from_response(self):
        client = http_answering({"success": True})
        writer = RegistrationWriter("https://relay.local/apps-script", http_client=client)

        result = asyncio.run(writer.append("sheet", 22, HEADERS, ROW))

        assert result == WriteResult(True, None)
        args, kwargs = client.post.call_args
        assert args[0] == "https://relay.local/apps-script"
        assert kwargs["json"] == {
            "action": "append",
            "sheetId": "sheet",
            "gid": 22,
            "headers": HEADERS,
            "data": [ROW],
        }

    def test_script_error_is_surfaced(self):
        client = http_answering({"success": False, "error": "Sheet locked"})
        writer = RegistrationWriter("https://x", http_client=client)
        assert asyncio.run(writer.append("sheet", 22, HEADERS, ROW)) == WriteResult(False, "Sheet locked")

    def test_truthy_but_not_true_success_is_failure(self):
        client = http_answering({"success": "yes"})
        writer = RegistrationWriter("https://x", http_client=client)
        assert asyncio.run(writer.append("sheet", 22, HEADERS, ROW)).success is False

    def test_unparsable_response(self):
        client = http_answering(json_error=ValueError("no json"))
        writer = RegistrationWriter("https://x", http_client=client)
        assert asyncio.run(writer.append("sheet", 22, HEADERS, ROW)) == WriteResult(False, "Invalid relay response")


class TestOpaqueMode:
    def test_dispatch_counts_as_success(self):
        client = MagicMock()
        client.post.return_value.json.side_effect = ValueError("opaque")
        writer = RegistrationWriter("https://script", mode="opaque", http_client=client)

        result = asyncio.run(writer.append("sheet", None, HEADERS, ROW))

        assert result.success is True
        kwargs = client.post.call_args.kwargs
        assert json.loads(kwargs["data"])["gid"] == 0
        assert kwargs["headers"]["Content-Type"].startswith("text/plain")
        client.post.return_value.json.assert_not_called()

    def test_network_error(self):
        client = MagicMock()
        client.post.side_effect = requests.exceptions.ConnectionError("offline")
        writer = RegistrationWriter("https://script", mode=WriteMode.OPAQUE, http_client=client)
        result = asyncio.run(writer.append("sheet", 22, HEADERS, ROW))
        assert result == WriteResult(False, "Network error while contacting write endpoint")


class TestPayloadValidation:
    @pytest.mark.parametrize("headers,row", [([], ROW), (HEADERS, []), (None, ROW)])
    def test_missing_headers_or_data_fails_without_io(self, headers, row):
        client = MagicMock()
        writer = RegistrationWriter("https://x", http_client=client)
        result = asyncio.run(writer.append("sheet", 22, headers, row))
        assert result == WriteResult(False, "Client: Missing headers or data")
        client.post.assert_not_called()

    def test_delete_may_omit_rows_and_carries_match_fields(self):
        client = http_answering({"success": True})
        writer = RegistrationWriter("https://x", http_client=client)
        result = asyncio.run(writer.send("delete", "sheet", 22, [], [],
                                         match_columns=["QR Code"], match_values=["654321"]))
        assert result.success
        body = client.post.call_args.kwargs["json"]
        assert body["matchColumns"] == ["QR Code"]
        assert body["matchValues"] == ["654321"]

    def test_match_fields_omitted_for_append(self):
        body = RegistrationWriter.build_payload("append", "sheet", 1, HEADERS, [ROW])
        assert "matchColumns" not in body and "matchValues" not in body

    def test_unknown_action(self):
        client = MagicMock()
        writer = RegistrationWriter("https://x", http_client=client)
        assert asyncio.run(writer.send("upsert", "sheet", 1, HEADERS, [ROW])).success is False
        client.post.assert_not_called()
