# services/coupons/form.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from services.coupons.orchestrator import CODE_LENGTH, RegistrationOrchestrator, RegistrationOutcome
from services.coupons.scan import sanitize_scanned_code

logger = logging.getLogger(__name__)


class RegistrationForm:
    """
    Form-level state around the orchestrator, independent of any renderer.

    While a submit is running `submitting` is set and further submits are
    ignored. A success clears the fields and raises `registered` for
    `banner_seconds`.
    """

    def __init__(self, orchestrator: RegistrationOrchestrator, banner_seconds: float = 3.0):
        self.orchestrator = orchestrator
        self.banner_seconds = banner_seconds
        self.code = ""
        self.mobile = ""
        self.name = ""
        self.error_key: Optional[str] = None
        self.code_error_key: Optional[str] = None
        self.registered = False
        self.submitting = False
        self._banner_task: asyncio.Task | None = None

    def set_code_from_scan(self, payload: str):
        self.code = sanitize_scanned_code(payload, CODE_LENGTH)
        self.code_error_key = None if len(self.code) == CODE_LENGTH else "codeLengthError"

    async def _clear_banner(self):
        await asyncio.sleep(self.banner_seconds)
        self.registered = False

    async def submit(self) -> Optional[RegistrationOutcome]:
        if self.submitting:
            logger.debug("Submit ignored: already submitting")
            return None

        self.error_key = None
        self.submitting = True
        try:
            outcome = await self.orchestrator.register(self.code, self.mobile, self.name)
        finally:
            self.submitting = False

        if outcome.succeeded:
            self.code = self.mobile = self.name = ""
            self.registered = True
            if self._banner_task is not None and not self._banner_task.done():
                self._banner_task.cancel()
            self._banner_task = asyncio.get_running_loop().create_task(self._clear_banner())
        else:
            self.error_key = outcome.message_key
        return outcome

    async def wait_banner(self):
        """Wait until the success banner has been cleared."""
        if self._banner_task is not None:
            await self._banner_task
