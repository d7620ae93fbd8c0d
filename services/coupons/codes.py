# services/coupons/codes.py
from __future__ import annotations

import logging

from services.coupons.headers import HeaderMap
from services.coupons.snapshot import TableSnapshotReader
from services.exceptions import ReadError

logger = logging.getLogger(__name__)


class CodeExistenceValidator:
    """Checks a code against the master list of issued codes."""

    def __init__(self, reader: TableSnapshotReader, sheet_id: str, gid: int):
        self.reader = reader
        self.sheet_id = sheet_id
        self.gid = gid

    async def exists(self, code: str) -> bool:
        code = str(code).strip()
        try:
            snapshot = await self.reader.read(self.sheet_id, self.gid)
        except ReadError as e:
            # Fail closed: an unverifiable code is rejected
            logger.error(f"Master code list unreadable, rejecting {code}: {e}")
            return False

        headers = HeaderMap.build(snapshot.labels, ["QR Code"], table="master code list")
        known = {headers.value(row, "QR Code") for row in snapshot.rows}
        known.discard("")
        found = code in known
        logger.debug(f"Code {code} exists={found} (list size {len(known)}, column {headers.label('QR Code')!r})")
        return found
