from enum import Enum

# Dialogue order; a session only ever moves to a later stage.
STAGE_ORDER = (
    "awaiting_location",
    "awaiting_issue",
    "awaiting_urgency",
    "complete",
)
TERMINAL_STAGES = {"complete"}


class Stage(Enum):
    AWAITING_LOCATION = "awaiting_location"
    AWAITING_ISSUE = "awaiting_issue"
    AWAITING_URGENCY = "awaiting_urgency"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self.value)

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STAGES

    @classmethod
    def parse(cls, value: str | None) -> "Stage | None":
        """Stage named by a callback URL, or None if absent or unknown."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None
