# app/routes/registration.py
from __future__ import annotations

import asyncio
import logging
import threading

import click
from flask import Blueprint, current_app, jsonify, request
from flask.cli import with_appcontext

from services.config_service import ConfigManager
from services.coupons.form import RegistrationForm
from services.coupons.messages import LANGUAGES, message
from services.coupons.offers import IneligibleReason
from services.coupons.orchestrator import (
    CODE_LENGTH,
    FailureReason,
    RegistrationOrchestrator,
    RegistrationState,
)
from services.coupons.scan import sanitize_scanned_code
from services.coupons.settings import CouponSettings
from services.exceptions import ConfigError

logger = logging.getLogger(__name__)

registration_bp = Blueprint("registration", __name__, url_prefix="/coupons")

_build_lock = threading.Lock()

_STATUS_BY_REASON = {
    FailureReason.INVALID_FORMAT: 400,
    FailureReason.CODE_NOT_FOUND: 422,
    FailureReason.OFFER_INELIGIBLE: 422,
    FailureReason.DUPLICATE_CODE: 409,
    FailureReason.DUPLICATE_MOBILE: 409,
    FailureReason.BUSY: 409,
    FailureReason.WRITE_FAILED: 502,
}


def _run_async(coro):
    """Run a coroutine to completion on a private event loop (Flask views are sync)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def get_orchestrator() -> RegistrationOrchestrator:
    """Process-wide orchestrator, built on first use. Raises ConfigError if endpoints are missing."""
    ext = current_app.extensions
    if ext.get("coupon_orchestrator") is None:
        with _build_lock:
            if ext.get("coupon_orchestrator") is None:
                section = current_app.config.get("COUPON_SETTINGS_SECTION", "coupons")
                settings = CouponSettings.load(ConfigManager(), section=section)
                ext["coupon_settings"] = settings
                ext["coupon_orchestrator"] = RegistrationOrchestrator.from_settings(settings)
    return ext["coupon_orchestrator"]


def _language(payload) -> str:
    settings = current_app.extensions.get("coupon_settings")
    default = settings.default_language if settings else "en"
    lang = str(payload.get("lang") or default).lower()
    return lang if lang in LANGUAGES else "en"


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


@registration_bp.route("/register", methods=["POST"])
def register():
    """
    Register a coupon code against a mobile number.

    Expects (form or JSON):
        code: 6-digit coupon code
        mobile: 10-digit mobile number
        name: (optional) letters and spaces
        lang: (optional) 'en' or 'ta'

    Concurrent submits are limited per client: the X-Client-Id header when
    sent, otherwise the remote address.
    """
    data = _payload()
    lang = _language(data)
    try:
        orchestrator = get_orchestrator()
    except ConfigError as e:
        logger.error(f"Coupon registration is not configured: {e.message}")
        return jsonify({"state": RegistrationState.FAILED.value, "reason": "config_error",
                        "message": message(e.message_key, lang)}), 500

    client = request.headers.get("X-Client-Id") or request.remote_addr
    outcome = _run_async(orchestrator.register(data.get("code"), data.get("mobile"), data.get("name", ""),
                                               client=client))

    if outcome.state is RegistrationState.SUCCEEDED:
        status = 200
    elif outcome.state is RegistrationState.AMBIGUOUS:
        status = 202
    else:
        status = _STATUS_BY_REASON.get(outcome.reason, 500)

    body = {
        "state": outcome.state.value,
        "reason": outcome.reason.value if outcome.reason else None,
        "message": message(outcome.message_key, lang),
    }
    if outcome.record is not None:
        body["offerType"] = outcome.record.offer_type
        body["registeredDate"] = outcome.record.registered_date
    return jsonify(body), status


@registration_bp.route("/eligibility/<code>", methods=["GET"])
def eligibility(code: str):
    """Report whether `code` currently maps to an active, date-valid offer."""
    lang = _language(request.args)
    try:
        orchestrator = get_orchestrator()
    except ConfigError as e:
        return jsonify({"eligible": False, "message": message(e.message_key, lang)}), 500

    result = _run_async(orchestrator.resolver.resolve(code))
    if result.ok:
        return jsonify({"eligible": True, "offerType": result.offer_type})
    return jsonify({
        "eligible": False,
        "reason": result.reason.value,
        "message": message(result.message_key, lang),
    }), 503 if result.reason is IneligibleReason.READ_FAILED else 200


@registration_bp.route("/scan", methods=["POST"])
def scan():
    """Clean up a decoded QR payload into a coupon code."""
    data = _payload()
    code = sanitize_scanned_code(data.get("payload"), CODE_LENGTH)
    valid = len(code) == CODE_LENGTH
    body = {"code": code, "valid": valid}
    if not valid:
        body["message"] = message("codeLengthError", _language(data))
    return jsonify(body)


@click.command("register-coupon")
@click.argument("code")
@click.argument("mobile")
@click.option("--name", default="", help="Customer name (letters and spaces).")
@click.option("--lang", default="en", type=click.Choice(LANGUAGES))
@with_appcontext
def register_coupon_command(code, mobile, name, lang):
    """
    Register CODE to MOBILE from the command line.
    """
    try:
        orchestrator = get_orchestrator()
    except ConfigError as e:
        raise click.ClickException(message(e.message_key, lang))

    form = RegistrationForm(orchestrator, banner_seconds=0)
    form.code, form.mobile, form.name = code, mobile, name

    async def submit():
        result = await form.submit()
        await form.wait_banner()
        return result

    outcome = _run_async(submit())
    click.echo(message(outcome.message_key, lang))
    if not outcome.succeeded:
        raise SystemExit(1)
