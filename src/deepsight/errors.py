"""Exceptions raised by deepsight."""


class DeepSightError(Exception):
    """Base class for deepsight errors."""


class ProviderFailure(DeepSightError):
    """One or more metric provider queries failed."""

    def __init__(self, families: list[str], cause: BaseException | None = None) -> None:
        self.families = list(families)
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"metric query failed for {', '.join(self.families)}{detail}")


class TransportFailure(DeepSightError):
    """A write to a subscriber channel failed."""

    def __init__(self, channel_id: str, cause: BaseException | None = None) -> None:
        self.channel_id = channel_id
        self.cause = cause
        super().__init__(f"delivery to subscriber {channel_id} failed: {cause}")
