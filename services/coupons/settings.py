# services/coupons/settings.py
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from services.config_service import ConfigManager
from services.exceptions import ConfigError

logger = logging.getLogger(__name__)

_SHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_GID_RE = re.compile(r"[?#&]gid=(\d+)")


def extract_sheet_info(url: str) -> Tuple[Optional[str], Optional[int]]:
    """
    Pull the spreadsheet id and tab gid out of a full Google Sheets URL.

    e.g. https://docs.google.com/spreadsheets/d/1AbC.../edit#gid=0 -> ("1AbC...", 0)
    Either part is None when the URL does not carry it.
    """
    if not url:
        return None, None
    id_match = _SHEET_ID_RE.search(url)
    gid_match = _GID_RE.search(url)
    sheet_id = id_match.group(1) if id_match else None
    gid = int(gid_match.group(1)) if gid_match else None
    return sheet_id, gid


@dataclass(frozen=True)
class CouponSettings:
    script_url: str
    sheet_id: str
    offers_gid: int = 2099398649
    registrations_gid: int = 1257095471
    valid_codes_gid: int = 0
    read_timeout: float = 15.0
    write_mode: str = "verifiable"
    write_url: Optional[str] = None       # same-origin relay; defaults to script_url
    verify_attempts: int = 5
    verify_base_delay: float = 0.5
    verify_step: float = 0.5
    banner_seconds: float = 3.0
    default_language: str = "en"

    @property
    def write_endpoint(self) -> str:
        return self.write_url or self.script_url

    @classmethod
    def load(cls, config_manager: ConfigManager | None = None, env=None,
             section: str = "coupons") -> "CouponSettings":
        """
        Build settings from config.json (tuning, tab gids) and the environment
        (endpoints). Raises ConfigError before any network call if the write
        endpoint or the sheet id is missing.
        """
        if env is None:
            load_dotenv()
            env = os.environ
        cm = config_manager or ConfigManager()
        if cm.last_load_error is not None:
            logger.warning(f"Ignoring unreadable {cm.resolved_path}, using built-in tuning: {cm.last_load_error}")

        script_url = (env.get("COUPON_SCRIPT_URL") or "").strip()
        sheet_url = (env.get("COUPON_SHEET_URL") or "").strip()
        if not script_url or not sheet_url:
            raise ConfigError(
                "Set COUPON_SCRIPT_URL and COUPON_SHEET_URL before registering coupons.",
                message_key="configError",
            )

        sheet_id, _gid = extract_sheet_info(sheet_url)
        if not sheet_id:
            raise ConfigError(f"Could not find a sheet id in {sheet_url!r}", message_key="invalidSheetUrl")

        def opt(*keys, default):
            return cm.get(section, *keys, default=default)

        write_mode = str(env.get("COUPON_WRITE_MODE") or opt("write_mode", default="verifiable")).lower()
        if write_mode not in ("verifiable", "opaque"):
            raise ConfigError(f"Unknown write mode {write_mode!r}; expected 'verifiable' or 'opaque'")

        settings = cls(
            script_url=script_url,
            sheet_id=sheet_id,
            offers_gid=int(opt("gids", "offers", default=cls.offers_gid)),
            registrations_gid=int(opt("gids", "registrations", default=cls.registrations_gid)),
            valid_codes_gid=int(opt("gids", "valid_codes", default=cls.valid_codes_gid)),
            read_timeout=float(opt("read_timeout_seconds", default=cls.read_timeout)),
            write_mode=write_mode,
            write_url=(env.get("COUPON_WRITE_RELAY_URL") or "").strip() or None,
            verify_attempts=int(opt("verify", "attempts", default=cls.verify_attempts)),
            verify_base_delay=float(opt("verify", "base_delay_seconds", default=cls.verify_base_delay)),
            verify_step=float(opt("verify", "step_seconds", default=cls.verify_step)),
            banner_seconds=float(opt("banner_seconds", default=cls.banner_seconds)),
            default_language=str(opt("default_language", default=cls.default_language)),
        )
        logger.debug(f"Coupon settings loaded: sheet={settings.sheet_id} mode={settings.write_mode}")
        return settings
