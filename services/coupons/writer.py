# services/coupons/writer.py
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

ACTIONS = ("append", "replace", "assign", "delete")


class WriteMode(str, Enum):
    VERIFIABLE = "verifiable"   # response body is read and checked
    OPAQUE = "opaque"           # fire-and-forget, response never inspected


@dataclass(frozen=True)
class WriteResult:
    success: bool
    error: Optional[str] = None


class RegistrationWriter:
    """
    Sends row commands to the Apps Script web app that owns the sheet.

    In VERIFIABLE mode the script's JSON answer decides success. In OPAQUE
    mode the request is only dispatched, so success means "sent without a
    transport error" and nothing more.
    """

    def __init__(self, endpoint: str, mode: WriteMode | str = WriteMode.VERIFIABLE,
                 timeout: float = 30.0, http_client=None):
        self.endpoint = endpoint
        self.mode = WriteMode(mode)
        self.timeout = timeout
        self.http_client = http_client or requests

    @staticmethod
    def build_payload(action: str, sheet_id: str, gid: Optional[int], headers: Sequence[str],
                      rows: Sequence[Sequence[Any]], match_columns: Optional[List[str]] = None,
                      match_values: Optional[List[Any]] = None) -> dict:
        body = {
            "action": action,
            "sheetId": sheet_id,
            "gid": 0 if gid is None else gid,
            "headers": list(headers or []),
            "data": [list(r) for r in rows or []],
        }
        if match_columns and match_values:
            body["matchColumns"] = list(match_columns)
            body["matchValues"] = list(match_values)
        return body

    def _post(self, body: dict) -> WriteResult:
        if self.mode is WriteMode.VERIFIABLE:
            response = self.http_client.post(self.endpoint, json=body, timeout=self.timeout)
            try:
                data = response.json()
            except ValueError:
                logger.error(f"Write endpoint returned a non-JSON body (HTTP {response.status_code})")
                return WriteResult(False, "Invalid relay response")
            logger.debug(f"Write endpoint response: {data}")
            if not isinstance(data, dict):
                return WriteResult(False, "Invalid relay response")
            return WriteResult(data.get("success") is True, data.get("error"))

        # Opaque: a simple text/plain POST, answer ignored
        self.http_client.post(
            self.endpoint,
            data=json.dumps(body),
            headers={"Content-Type": "text/plain;charset=utf-8"},
            timeout=self.timeout,
        )
        return WriteResult(True)

    async def send(self, action: str, sheet_id: str, gid: Optional[int], headers: Sequence[str],
                   rows: Sequence[Sequence[Any]], match_columns: Optional[List[str]] = None,
                   match_values: Optional[List[Any]] = None) -> WriteResult:
        if action not in ACTIONS:
            return WriteResult(False, f"Client: Unknown action {action!r}")
        if action != "delete" and (not headers or not rows):
            logger.warning(f"Refusing {action} with missing headers or data: headers={headers} rows={rows}")
            return WriteResult(False, "Client: Missing headers or data")

        body = self.build_payload(action, sheet_id, gid, headers, rows, match_columns, match_values)
        try:
            result = await asyncio.to_thread(self._post, body)
        except requests.exceptions.RequestException as e:
            logger.error(f"{action} to {sheet_id} gid={gid} failed: {e}")
            return WriteResult(False, "Network error while contacting write endpoint")

        if result.success:
            logger.info(f"{action} sent to {sheet_id} gid={gid} ({self.mode.value}, {len(rows)} row(s))")
        else:
            logger.error(f"{action} to {sheet_id} gid={gid} rejected: {result.error}")
        return result

    async def append(self, sheet_id: str, gid: Optional[int], headers: Sequence[str],
                     row: Sequence[Any]) -> WriteResult:
        return await self.send("append", sheet_id, gid, headers, [row] if row else [])
