from gacha_engine.core.enums import DenialReason, PullType

DENIAL_MESSAGES: dict[DenialReason, str] = {
    DenialReason.UNKNOWN_PULL_TYPE: "Unknown pull type",
    DenialReason.INSUFFICIENT_FUNDS: "Insufficient funds for this pull",
    DenialReason.DAILY_LIMIT_REACHED: "Daily pull limit reached",
    DenialReason.FREE_PULL_EXHAUSTED: "Today's free pull has already been used",
}


class GachaError(Exception):
    """Base class for every error raised by the gacha engine."""


class ConfigurationError(GachaError):
    """The catalog or engine configuration cannot produce a valid pull."""


class IneligibleError(GachaError):
    """A pull request was denied before any state was touched."""

    def __init__(self, reason: DenialReason, *, pull_type: PullType | None = None) -> None:
        super().__init__(DENIAL_MESSAGES[reason])
        self.reason = reason
        self.pull_type = pull_type


class UpstreamError(GachaError):
    """The wallet service timed out or failed."""


class PityUpdateRejectedError(GachaError):
    """A pity update was attempted for a pull that was never granted."""
