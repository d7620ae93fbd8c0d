# services/coupons/snapshot.py
from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import requests

from services.exceptions import ReadError, ReadTimeoutError

logger = logging.getLogger(__name__)

GVIZ_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}/gviz/tq"
DEFAULT_TIMEOUT = 15.0


@dataclass
class TableSnapshot:
    """Point-in-time copy of one sheet tab: trimmed column labels plus non-blank rows."""
    labels: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.rows


def cell_text(cell: Any) -> str:
    """
    Render a gviz cell as text. The literal value wins over the formatted
    one; whole-number floats lose their '.0' so numeric codes compare as
    the sheet shows them.
    """
    if not cell:
        return ""
    raw = cell.get("v")
    if raw is None:
        raw = cell.get("f")
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw)


def _cells(row: Any) -> List[Any]:
    if row is None:
        return []
    if not isinstance(row, dict) or not isinstance(row.get("c") or [], list):
        raise ReadError("Sheet response has a malformed row")
    cells = row.get("c") or []
    if any(c is not None and not isinstance(c, dict) for c in cells):
        raise ReadError("Sheet response has a malformed cell")
    return cells


def table_to_snapshot(table: Dict[str, Any] | None) -> TableSnapshot:
    """
    Convert a gviz `table` object into a TableSnapshot.

    If every column label is blank the first data row is used as the header
    row (blank header cells become col1, col2, ...). Rows with nothing but
    blanks are dropped. Raises ReadError if the table is not shaped like a
    gviz table.
    """
    if not table:
        return TableSnapshot(labels=[])
    if not isinstance(table, dict):
        raise ReadError("Sheet response table is not an object")
    cols = table.get("cols") or []
    rows = table.get("rows") or []
    if not isinstance(cols, list) or not isinstance(rows, list):
        raise ReadError("Sheet response table has malformed cols or rows")
    if any(c is not None and not isinstance(c, dict) for c in cols):
        raise ReadError("Sheet response has a malformed column")

    labels = [str((c or {}).get("label") or "").strip() for c in cols]
    rows = list(rows)

    if labels and all(not h for h in labels) and rows:
        header_cells = _cells(rows[0])
        labels = []
        for idx in range(len(cols)):
            cell = header_cells[idx] if idx < len(header_cells) else None
            labels.append(cell_text(cell).strip() or f"col{idx + 1}")
        rows = rows[1:]
        logger.debug(f"Derived headers from first row: {labels}")

    out: List[Dict[str, str]] = []
    for r in rows:
        cells = _cells(r)
        item = {}
        for i, label in enumerate(labels):
            item[label] = cell_text(cells[i] if i < len(cells) else None)
        if any(v.strip() for v in item.values()):
            out.append(item)
    return TableSnapshot(labels=labels, rows=out)


def _unwrap_response(text: str) -> Dict[str, Any]:
    """Strip the `google.visualization.Query.setResponse(...)` wrapper."""
    start = text.find("(")
    end = text.rfind(")")
    if start == -1 or end <= start:
        raise ReadError("Sheet response is not a gviz payload")
    try:
        payload = json.loads(text[start + 1:end])
    except json.JSONDecodeError as e:
        raise ReadError(f"Sheet response is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ReadError(f"Sheet response is not a gviz object: {text[:80]!r}")
    return payload


class TableSnapshotReader:
    """
    Reads whole sheet tabs through the public gviz query endpoint.

    Every call is a fresh HTTP exchange (nothing is cached) tagged with its
    own request id, and the response must echo that id back.
    """

    _req_ids = itertools.count(1)

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session_factory=None):
        self.timeout = timeout
        self._session_factory = session_factory or requests.Session

    def _url(self, sheet_id: str, gid: int, req_id: int) -> str:
        base = GVIZ_URL.format(sheet_id=sheet_id)
        return f"{base}?tqx=reqId:{req_id};out:json;headers=1&gid={gid}"

    def _fetch(self, url: str) -> str:
        # Session is closed on every path, including timeouts inside requests
        with self._session_factory() as session:
            response = session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.text

    async def read(self, sheet_id: str, gid: int) -> TableSnapshot:
        """
        Fetch the current snapshot of tab `gid` in spreadsheet `sheet_id`.

        :raises ReadTimeoutError: no answer within `timeout` seconds
        :raises ReadError: transport failure, HTTP error, malformed or
            mismatched payload, or a gviz error status
        """
        req_id = next(self._req_ids)
        url = self._url(sheet_id, gid, req_id)
        logger.debug(f"Reading sheet {sheet_id} gid={gid} reqId={req_id}")

        try:
            text = await asyncio.wait_for(asyncio.to_thread(self._fetch, url), timeout=self.timeout)
        except (asyncio.TimeoutError, requests.exceptions.Timeout):
            raise ReadTimeoutError(f"Timed out loading sheet {sheet_id} gid={gid}")
        except requests.exceptions.RequestException as e:
            raise ReadError(f"Failed to load sheet {sheet_id} gid={gid}: {e}")

        payload = _unwrap_response(text)
        if str(payload.get("reqId")) != str(req_id):
            raise ReadError(f"Response reqId {payload.get('reqId')!r} does not match request {req_id}")
        if payload.get("status") == "error":
            errors = payload.get("errors")
            first = errors[0] if isinstance(errors, list) and errors else {}
            if not isinstance(first, dict):
                first = {}
            detail = first.get("detailed_message") or first.get("message") or "unknown error"
            raise ReadError(f"Sheet {sheet_id} gid={gid} returned an error: {detail}")

        snapshot = table_to_snapshot(payload.get("table"))
        logger.debug(f"Sheet {sheet_id} gid={gid}: columns={snapshot.labels} rows={len(snapshot.rows)}")
        return snapshot
