# services/coupons/offers.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Union

from services.coupons.headers import HeaderMap
from services.coupons.snapshot import TableSnapshotReader
from services.exceptions import ReadError

logger = logging.getLogger(__name__)

OFFER_HEADERS = ("Type", "Status", "Start Date", "End Date", "Qr Codes")
OFFER_ALIASES = {"Qr Codes": ("QR Code", "QR")}

_DMY_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/]?(\d{2,4})$")
# gviz renders date cells as Date(2024,11,31) with a zero-based month
_GVIZ_DATE_RE = re.compile(r"^Date\((\d{4}),\s*(\d{1,2}),\s*(\d{1,2})")
_CODES_SPLIT_RE = re.compile(r"[\n\r,]+")


def parse_sheet_date(value: str | None) -> Optional[date]:
    """
    Parse the day-first dates used in the offers tab.

    Accepts 31-12-2024, 31/12/2024, 1-1-25 (two-digit years get +2000) and
    gviz Date(y,m,d) literals. Anything else, including impossible dates
    such as 31-02-2024, gives None.
    """
    s = str(value or "").strip()
    m = _DMY_RE.match(s)
    if m:
        d, mo, y = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if y < 100:
            y += 2000
    else:
        m = _GVIZ_DATE_RE.match(s)
        if not m:
            return None
        y, mo, d = int(m.group(1)), int(m.group(2)) + 1, int(m.group(3))
    try:
        return date(y, mo, d)
    except ValueError:
        return None


def is_date_in_range_inclusive(now: datetime, start: Optional[date], end: Optional[date]) -> bool:
    """True when `now` falls in [start 00:00 UTC, end + 1 day 00:00 UTC). None is unbounded."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if start is not None and now < datetime.combine(start, time.min, tzinfo=timezone.utc):
        return False
    if end is not None and now >= datetime.combine(end, time.min, tzinfo=timezone.utc) + timedelta(days=1):
        return False
    return True


def split_codes(cell: str | None) -> List[str]:
    """Split a codes cell on commas and line breaks, trimming and dropping blanks."""
    return [c.strip() for c in _CODES_SPLIT_RE.split(str(cell or "")) if c.strip()]


@dataclass(frozen=True)
class OfferRecord:
    type: str
    status: str
    start_date: Optional[date]
    end_date: Optional[date]
    codes: FrozenSet[str]

    @property
    def is_active(self) -> bool:
        return self.status.lower() == "active"


class IneligibleReason(str, Enum):
    NOT_ACTIVE = "not_active"
    NOT_VALID_ON_DATE = "not_valid_on_date"
    NOT_ELIGIBLE = "not_eligible"
    READ_FAILED = "read_failed"


_REASON_TEXT = {
    IneligibleReason.NOT_ACTIVE: "Offer not active for this QR code",
    IneligibleReason.NOT_VALID_ON_DATE: "Offer not valid on this date",
    IneligibleReason.NOT_ELIGIBLE: "QR code not eligible for any offer",
    IneligibleReason.READ_FAILED: "Could not read offers",
}

_REASON_MESSAGE_KEY = {
    IneligibleReason.NOT_ACTIVE: "offerInactiveError",
    IneligibleReason.NOT_VALID_ON_DATE: "offerDateError",
    IneligibleReason.NOT_ELIGIBLE: "offerNotEligibleError",
    IneligibleReason.READ_FAILED: "offerReadError",
}


@dataclass(frozen=True)
class Eligible:
    offer_type: str
    ok: bool = True


@dataclass(frozen=True)
class Ineligible:
    reason: IneligibleReason
    ok: bool = False

    @property
    def error(self) -> str:
        return _REASON_TEXT[self.reason]

    @property
    def message_key(self) -> str:
        return _REASON_MESSAGE_KEY[self.reason]


Eligibility = Union[Eligible, Ineligible]


def offers_from_snapshot(snapshot) -> List[OfferRecord]:
    headers = HeaderMap.build(snapshot.labels, OFFER_HEADERS, OFFER_ALIASES, table="offers")
    offers = []
    for row in snapshot.rows:
        offers.append(OfferRecord(
            type=headers.value(row, "Type"),
            status=headers.value(row, "Status"),
            start_date=parse_sheet_date(headers.value(row, "Start Date")),
            end_date=parse_sheet_date(headers.value(row, "End Date")),
            codes=frozenset(split_codes(headers.value(row, "Qr Codes"))),
        ))
    return offers


class OfferEligibilityResolver:
    """Decides whether a code currently maps to an active, date-valid offer."""

    def __init__(self, reader: TableSnapshotReader, sheet_id: str, gid: int,
                 clock: Callable[[], datetime] | None = None):
        self.reader = reader
        self.sheet_id = sheet_id
        self.gid = gid
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve(self, code: str) -> Eligibility:
        """
        First offer row (in sheet order) whose codes contain `code` decides
        the result; later rows naming the same code are never consulted.
        """
        code = str(code).strip()
        try:
            snapshot = await self.reader.read(self.sheet_id, self.gid)
        except ReadError as e:
            logger.error(f"Could not read offers for {code}: {e}")
            return Ineligible(IneligibleReason.READ_FAILED)

        now = self._clock()
        offers = offers_from_snapshot(snapshot)
        logger.debug(f"Resolving offer for {code} across {len(offers)} offer rows")
        for offer in offers:
            if code not in offer.codes:
                continue
            if not offer.is_active:
                logger.info(f"Code {code} maps to inactive offer {offer.type!r} (status={offer.status!r})")
                return Ineligible(IneligibleReason.NOT_ACTIVE)
            if not is_date_in_range_inclusive(now, offer.start_date, offer.end_date):
                logger.info(
                    f"Code {code} maps to offer {offer.type!r} outside "
                    f"{offer.start_date}..{offer.end_date} at {now.isoformat()}"
                )
                return Ineligible(IneligibleReason.NOT_VALID_ON_DATE)
            return Eligible(offer.type)
        return Ineligible(IneligibleReason.NOT_ELIGIBLE)
