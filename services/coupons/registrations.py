# services/coupons/registrations.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from services.coupons.headers import HeaderMap
from services.coupons.snapshot import TableSnapshotReader
from services.exceptions import ReadError

logger = logging.getLogger(__name__)

# Registration tab headers, in write order
REGISTRATION_HEADERS = ("QR Code", "Mobile", "Name", "Status", "OfferType", "RegisteredDate")


@dataclass(frozen=True)
class RegistrationRecord:
    qr_code: str
    mobile: str
    name: str
    status: str
    offer_type: str
    registered_date: str

    def as_cells(self) -> dict:
        """Canonical header -> cell value."""
        return {
            "QR Code": self.qr_code,
            "Mobile": self.mobile,
            "Name": self.name,
            "Status": self.status,
            "OfferType": self.offer_type,
            "RegisteredDate": self.registered_date,
        }


@dataclass(frozen=True)
class Assignment:
    assigned: bool
    who: Optional[str] = None


class UniquenessChecker:
    """
    Looks for an existing registration row by code or by mobile number.

    Read failures are reported as "not assigned": a rare duplicate is
    preferred to blocking every registration while the sheet is unreadable.
    """

    def __init__(self, reader: TableSnapshotReader, sheet_id: str, gid: int):
        self.reader = reader
        self.sheet_id = sheet_id
        self.gid = gid

    async def _find(self, field: str, other: str, value: str) -> Assignment:
        value = str(value).strip()
        try:
            snapshot = await self.reader.read(self.sheet_id, self.gid)
        except ReadError as e:
            logger.warning(f"Registrations unreadable, treating {field} {value} as unassigned: {e}")
            return Assignment(assigned=False)

        labels = snapshot.labels if snapshot.rows else list(REGISTRATION_HEADERS)
        headers = HeaderMap.build(labels, ["QR Code", "Mobile", "Name"], table="registrations")
        for row in snapshot.rows:
            if headers.value(row, field) == value:
                who = f"{headers.value(row, 'Name')} {headers.value(row, other)}".strip()
                logger.info(f"{field} {value} already registered to {who!r}")
                return Assignment(assigned=True, who=who)
        return Assignment(assigned=False)

    async def is_code_assigned(self, code: str) -> Assignment:
        return await self._find("QR Code", "Mobile", code)

    async def is_mobile_assigned(self, mobile: str) -> Assignment:
        return await self._find("Mobile", "QR Code", mobile)

    async def registration_headers(self) -> List[str]:
        """Current registration column labels, or the canonical ones if the tab is empty/unreadable."""
        try:
            snapshot = await self.reader.read(self.sheet_id, self.gid)
        except ReadError as e:
            logger.warning(f"Could not read registration headers, using defaults: {e}")
            return list(REGISTRATION_HEADERS)
        if not snapshot.rows:
            return list(REGISTRATION_HEADERS)
        return list(snapshot.labels)
