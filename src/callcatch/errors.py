"""Exception types shared across the webhook service."""


class CallcatchError(Exception):
    """Base class for errors raised by callcatch."""


class ConfigError(CallcatchError):
    """Required settings are missing or a setting has an unusable value."""

    def __init__(self, missing: list[str] | None = None, invalid: dict[str, str] | None = None):
        self.missing = list(missing or [])
        self.invalid = dict(invalid or {})
        parts = []
        if self.missing:
            parts.append(f"missing required settings: {', '.join(self.missing)}")
        for name, reason in self.invalid.items():
            parts.append(f"invalid {name}: {reason}")
        super().__init__("; ".join(parts) or "invalid configuration")


class MalformedWebhook(CallcatchError):
    """A provider callback is missing a field the handler cannot do without."""


class ExtractionError(CallcatchError):
    """The language model returned nothing usable."""


class InvalidTransition(CallcatchError):
    """A dialogue stage change that would skip or rewind the flow."""
