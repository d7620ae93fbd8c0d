# services/coupons/verifier.py
from __future__ import annotations

import asyncio
import logging

from services.coupons.registrations import UniquenessChecker

logger = logging.getLogger(__name__)


class RegistrationVerifier:
    """
    Re-reads the registrations tab until a freshly written code shows up.

    The sheet is only eventually consistent, so a successful write may not be
    visible straight away. Polling is bounded: attempt i waits
    base + i * step seconds first. A False result means "unknown", not
    "failed"; callers must not re-submit on it.
    """

    def __init__(self, checker: UniquenessChecker, attempts: int = 5,
                 base_delay: float = 0.5, step: float = 0.5, sleep=None):
        self.checker = checker
        self.attempts = attempts
        self.base_delay = base_delay
        self.step = step
        self._sleep = sleep or asyncio.sleep

    async def confirm(self, code: str) -> bool:
        for attempt in range(self.attempts):
            await self._sleep(self.base_delay + attempt * self.step)
            check = await self.checker.is_code_assigned(code)
            logger.debug(f"Verify {code}: attempt {attempt + 1}/{self.attempts} assigned={check.assigned}")
            if check.assigned:
                return True
        logger.warning(f"Code {code} still not visible after {self.attempts} checks")
        return False
