"""Startup configuration.

Settings are read once from the environment (after ``.env`` is loaded) into
an immutable ``Settings`` object that is passed to every component.  A
missing required variable is a startup failure; a missing optional variable
only switches the matching feature off.
"""

import logging
import os
import sys
from dataclasses import dataclass
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from callcatch.errors import ConfigError
from callcatch.hours import WeeklySchedule, default_schedule, parse_schedule

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_NUMBER",
    "OWNER_NUMBER",
    "FORWARD_TO",
    "BUSINESS_NAME",
    "BUSINESS_START",
    "BUSINESS_END",
    "TIMEZONE",
]

OPTIONAL_VARS = [
    "BUSINESS_SCHEDULE",
    "SENDGRID_API_KEY",
    "EMAIL_TO",
    "EMAIL_FROM",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "PUBLIC_BASE_URL",
    "MIN_ANSWERED_SECONDS",
    "DIAL_TIMEOUT_SECONDS",
    "GATHER_TIMEOUT_SECONDS",
    "SESSION_TTL_SECONDS",
    "GAZETTEER_PATH",
    "URGENT_KEYWORDS",
    "SPEECH_LANGUAGE",
    "LOG_LEVEL",
]

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class Settings:
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_number: str
    owner_number: str
    forward_to: str
    business_name: str
    timezone: ZoneInfo
    schedule: WeeklySchedule

    sendgrid_api_key: str = ""
    email_to: str = ""
    email_from: str = ""

    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL

    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    public_base_url: str = ""

    min_answered_seconds: int = 12
    dial_timeout_seconds: int = 20
    gather_timeout_seconds: int = 6
    session_ttl_seconds: int = 600
    speech_language: str = "en-AU"
    gazetteer_path: str = ""
    extra_urgent_keywords: tuple[str, ...] = ()
    log_level: str = "INFO"

    @property
    def email_enabled(self) -> bool:
        return bool(self.sendgrid_api_key and self.email_to and self.email_from)

    @property
    def extraction_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def tts_enabled(self) -> bool:
        return bool(self.elevenlabs_api_key and self.elevenlabs_voice_id and self.public_base_url)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from ``env`` (defaults to ``os.environ``).

    Raises ConfigError naming every missing or invalid option at once.
    """
    if env is None:
        env = os.environ

    def get(name: str, default: str = "") -> str:
        return (env.get(name) or default).strip()

    missing = [var for var in REQUIRED_VARS if not get(var)]
    invalid: dict[str, str] = {}

    def get_int(name: str, default: int) -> int:
        raw = get(name)
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            invalid[name] = f"expected an integer, got {raw!r}"
            return default

    start = get_int("BUSINESS_START", 0)
    end = get_int("BUSINESS_END", 0)
    for name, hour in (("BUSINESS_START", start), ("BUSINESS_END", end)):
        if not 0 <= hour <= 24:
            invalid[name] = f"hour out of range: {hour}"

    tz = None
    if get("TIMEZONE"):
        try:
            tz = ZoneInfo(get("TIMEZONE"))
        except (ZoneInfoNotFoundError, ValueError):
            invalid["TIMEZONE"] = f"unknown time zone {get('TIMEZONE')!r}"

    schedule = default_schedule(start, end)
    if get("BUSINESS_SCHEDULE"):
        try:
            schedule = parse_schedule(get("BUSINESS_SCHEDULE"))
        except ValueError as e:
            invalid["BUSINESS_SCHEDULE"] = str(e)

    min_answered = get_int("MIN_ANSWERED_SECONDS", 12)
    dial_timeout = get_int("DIAL_TIMEOUT_SECONDS", 20)
    gather_timeout = get_int("GATHER_TIMEOUT_SECONDS", 6)
    session_ttl = get_int("SESSION_TTL_SECONDS", 600)

    if missing or invalid:
        raise ConfigError(missing=missing, invalid=invalid)

    keywords = tuple(k.strip().lower() for k in get("URGENT_KEYWORDS").split(",") if k.strip())

    return Settings(
        twilio_account_sid=get("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=get("TWILIO_AUTH_TOKEN"),
        twilio_number=get("TWILIO_NUMBER"),
        owner_number=get("OWNER_NUMBER"),
        forward_to=get("FORWARD_TO"),
        business_name=get("BUSINESS_NAME"),
        timezone=tz,
        schedule=schedule,
        sendgrid_api_key=get("SENDGRID_API_KEY"),
        email_to=get("EMAIL_TO"),
        email_from=get("EMAIL_FROM"),
        openai_api_key=get("OPENAI_API_KEY"),
        openai_model=get("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        elevenlabs_api_key=get("ELEVENLABS_API_KEY"),
        elevenlabs_voice_id=get("ELEVENLABS_VOICE_ID"),
        public_base_url=get("PUBLIC_BASE_URL").rstrip("/"),
        min_answered_seconds=min_answered,
        dial_timeout_seconds=dial_timeout,
        gather_timeout_seconds=gather_timeout,
        session_ttl_seconds=session_ttl,
        speech_language=get("SPEECH_LANGUAGE", "en-AU"),
        gazetteer_path=get("GAZETTEER_PATH"),
        extra_urgent_keywords=keywords,
        log_level=get("LOG_LEVEL", "INFO").upper(),
    )


def log_feature_summary(settings: Settings) -> None:
    """Warn once for every optional feature that is switched off."""
    if not settings.email_enabled:
        logger.warning("Email channel disabled (SENDGRID_API_KEY, EMAIL_TO and EMAIL_FROM required)")
    if not settings.extraction_enabled:
        logger.warning("Lead extraction disabled (OPENAI_API_KEY not set), raw transcripts will be used")
    if not settings.tts_enabled:
        logger.warning(
            "ElevenLabs voice disabled (ELEVENLABS_API_KEY, ELEVENLABS_VOICE_ID and PUBLIC_BASE_URL required)"
        )
    logger.info(
        "Config: business=%r tz=%s email=%s extraction=%s(%s) tts=%s",
        settings.business_name,
        settings.timezone.key,
        settings.email_enabled,
        settings.extraction_enabled,
        settings.openai_model,
        settings.tts_enabled,
    )


def validate_config() -> Settings:
    """Load settings at startup, exiting the process with a clear error if any
    required variable is missing or any value is unusable.
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        print(
            f"\nFATAL: {e}\n"
            f"\nSet them in .env (local) or the host's secret store (production).\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.debug("Optional env var %s is not set", var)
    log_feature_summary(settings)
    return settings
