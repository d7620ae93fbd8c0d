# services/coupons/orchestrator.py
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple

from services.coupons.codes import CodeExistenceValidator
from services.coupons.headers import resolve_header
from services.coupons.offers import OfferEligibilityResolver
from services.coupons.registrations import REGISTRATION_HEADERS, RegistrationRecord, UniquenessChecker
from services.coupons.settings import CouponSettings
from services.coupons.snapshot import TableSnapshotReader
from services.coupons.verifier import RegistrationVerifier
from services.coupons.writer import RegistrationWriter
from services.exceptions import (
    AmbiguousError,
    CouponError,
    DuplicateError,
    FormatError,
    IneligibleError,
    WriteError,
)

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
_CODE_RE = re.compile(r"^\d{6}$")
_MOBILE_RE = re.compile(r"^\d{10}$")
_NAME_RE = re.compile(r"^[A-Za-z\s]+$")


class RegistrationState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_ELIGIBILITY = "checking_eligibility"
    CHECKING_DUPLICATES = "checking_duplicates"
    WRITING = "writing"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    AMBIGUOUS = "ambiguous"


class FailureReason(str, Enum):
    INVALID_FORMAT = "invalid_format"
    CODE_NOT_FOUND = "code_not_found"
    OFFER_INELIGIBLE = "offer_ineligible"
    DUPLICATE_CODE = "duplicate_code"
    DUPLICATE_MOBILE = "duplicate_mobile"
    WRITE_FAILED = "write_failed"
    UNVERIFIED = "unverified"
    BUSY = "busy"


@dataclass(frozen=True)
class RegistrationOutcome:
    state: RegistrationState
    reason: Optional[FailureReason]
    message_key: str
    detail: str = ""                        # for logs only, never shown to the customer
    record: Optional[RegistrationRecord] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RegistrationState.SUCCEEDED


def validate_submission(code, mobile, name="") -> Tuple[str, str, str]:
    """Shape checks done before any network call. Raises FormatError."""
    code = str(code or "").strip()
    mobile = str(mobile or "").strip()
    name = str(name or "")

    if not code or not mobile:
        raise FormatError("Code and mobile are required", reason=FailureReason.INVALID_FORMAT,
                          message_key="requiredError")
    if not _CODE_RE.match(code):
        raise FormatError(f"Code {code!r} is not {CODE_LENGTH} digits", reason=FailureReason.INVALID_FORMAT,
                          message_key="codeLengthError")
    if not _MOBILE_RE.match(mobile):
        raise FormatError(f"Mobile {mobile!r} is not 10 digits", reason=FailureReason.INVALID_FORMAT,
                          message_key="mobileLengthError")
    if name and not _NAME_RE.match(name):
        raise FormatError(f"Name {name!r} has characters other than letters and spaces",
                          reason=FailureReason.INVALID_FORMAT, message_key="nameFormatError")
    return code, mobile, name


def _iso_now(clock: Callable[[], datetime]) -> str:
    return clock().astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RegistrationOrchestrator:
    """
    Runs one registration: validate -> eligibility -> duplicates -> write -> verify.

    The first failing step ends the run. Only one run may be in flight per
    client key; a second call for the same key made meanwhile is turned away
    as BUSY without touching the sheet. Other clients are not held up.
    Nothing is retried automatically. `state` tracks the latest transition.
    """

    def __init__(
            self,
            validator: CodeExistenceValidator,
            resolver: OfferEligibilityResolver,
            checker: UniquenessChecker,
            writer: RegistrationWriter,
            verifier: RegistrationVerifier,
            sheet_id: str,
            registrations_gid: int,
            clock: Callable[[], datetime] | None = None,
    ):
        self.validator = validator
        self.resolver = resolver
        self.checker = checker
        self.writer = writer
        self.verifier = verifier
        self.sheet_id = sheet_id
        self.registrations_gid = registrations_gid
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # threading.Lock rather than asyncio.Lock: Flask runs each request in its own event loop
        self._guard = threading.Lock()
        self._inflight: set = set()
        self.state = RegistrationState.IDLE

    @classmethod
    def from_settings(cls, settings: CouponSettings, reader: TableSnapshotReader | None = None,
                      http_client=None, sleep=None, clock=None) -> "RegistrationOrchestrator":
        reader = reader or TableSnapshotReader(timeout=settings.read_timeout)
        checker = UniquenessChecker(reader, settings.sheet_id, settings.registrations_gid)
        return cls(
            validator=CodeExistenceValidator(reader, settings.sheet_id, settings.valid_codes_gid),
            resolver=OfferEligibilityResolver(reader, settings.sheet_id, settings.offers_gid, clock=clock),
            checker=checker,
            writer=RegistrationWriter(settings.write_endpoint, settings.write_mode, http_client=http_client),
            verifier=RegistrationVerifier(
                checker,
                attempts=settings.verify_attempts,
                base_delay=settings.verify_base_delay,
                step=settings.verify_step,
                sleep=sleep,
            ),
            sheet_id=settings.sheet_id,
            registrations_gid=settings.registrations_gid,
            clock=clock,
        )

    @property
    def in_flight(self) -> bool:
        with self._guard:
            return bool(self._inflight)

    def is_in_flight(self, client=None) -> bool:
        with self._guard:
            return client in self._inflight

    def _claim(self, client) -> bool:
        with self._guard:
            if client in self._inflight:
                return False
            self._inflight.add(client)
            return True

    def _release(self, client):
        with self._guard:
            self._inflight.discard(client)

    def _enter(self, state: RegistrationState):
        logger.debug(f"Registration state {self.state.value} -> {state.value}")
        self.state = state

    async def register(self, code, mobile, name="", client=None) -> RegistrationOutcome:
        """
        Run one registration for `client` (any hashable key, e.g. a session id).
        Calls without a key share one slot.
        """
        if not self._claim(client):
            logger.warning(f"Rejected registration for {code}: client {client!r} already has one in flight")
            return RegistrationOutcome(RegistrationState.FAILED, FailureReason.BUSY, "busyError",
                                       detail="registration already in flight")
        try:
            self._enter(RegistrationState.IDLE)
            record = await self._run(code, mobile, name)
        except AmbiguousError as e:
            self._enter(RegistrationState.AMBIGUOUS)
            logger.warning(f"Registration for {code} is ambiguous: {e.message}")
            return RegistrationOutcome(RegistrationState.AMBIGUOUS, e.reason, e.message_key, e.message)
        except CouponError as e:
            self._enter(RegistrationState.FAILED)
            logger.info(f"Registration for {code} failed ({e.reason.value if e.reason else 'unknown'}): {e.message}")
            return RegistrationOutcome(RegistrationState.FAILED, e.reason, e.message_key, e.message)
        finally:
            self._release(client)

        logger.info(f"Registered {record.qr_code} to {record.mobile} for offer {record.offer_type!r}")
        return RegistrationOutcome(RegistrationState.SUCCEEDED, None, "successMessage", record=record)

    async def _run(self, code, mobile, name) -> RegistrationRecord:
        self._enter(RegistrationState.VALIDATING)
        code, mobile, name = validate_submission(code, mobile, name)
        if not await self.validator.exists(code):
            raise IneligibleError(f"Code {code} is not in the master list",
                                  reason=FailureReason.CODE_NOT_FOUND, message_key="invalidQrError")

        self._enter(RegistrationState.CHECKING_ELIGIBILITY)
        eligibility = await self.resolver.resolve(code)
        if not eligibility.ok:
            raise IneligibleError(eligibility.error, reason=FailureReason.OFFER_INELIGIBLE,
                                  message_key=eligibility.message_key)

        self._enter(RegistrationState.CHECKING_DUPLICATES)
        dup_code = await self.checker.is_code_assigned(code)
        if dup_code.assigned:
            raise DuplicateError(f"Code {code} already registered to {dup_code.who!r}",
                                 reason=FailureReason.DUPLICATE_CODE, message_key="duplicateQrError")
        dup_mobile = await self.checker.is_mobile_assigned(mobile)
        if dup_mobile.assigned:
            raise DuplicateError(f"Mobile {mobile} already registered to {dup_mobile.who!r}",
                                 reason=FailureReason.DUPLICATE_MOBILE, message_key="duplicateMobileError")

        self._enter(RegistrationState.WRITING)
        record = RegistrationRecord(
            qr_code=code,
            mobile=mobile,
            name=name,
            status="Assigned",
            offer_type=eligibility.offer_type,
            registered_date=_iso_now(self._clock),
        )
        existing = await self.checker.registration_headers()
        headers = [resolve_header(existing, h) or h for h in REGISTRATION_HEADERS]
        cells = record.as_cells()
        row = [cells[h] for h in REGISTRATION_HEADERS]
        result = await self.writer.append(self.sheet_id, self.registrations_gid, headers, row)
        if not result.success:
            raise WriteError(result.error or "Append failed", reason=FailureReason.WRITE_FAILED,
                             message_key="submitError")

        self._enter(RegistrationState.VERIFYING)
        if not await self.verifier.confirm(code):
            raise AmbiguousError(f"Append of {code} reported success but the row never appeared",
                                 reason=FailureReason.UNVERIFIED, message_key="unverifiedError")

        self._enter(RegistrationState.SUCCEEDED)
        return record
