class RaceError(Exception):
    """Base class for errors raised by the race core."""


class ConfigurationError(RaceError):
    """A start line or server configuration was rejected."""


class UnknownCompetitor(RaceError):
    """Telemetry or a leave referenced a competitor that is not in the race."""

    def __init__(self, competitor_id: str, race_id: str | None = None):
        self.competitor_id = competitor_id
        self.race_id = race_id
        where = f" in race {race_id}" if race_id is not None else ""
        super().__init__(f"Unknown competitor {competitor_id}{where}")


class MalformedTelemetry(RaceError, ValueError):
    """An inbound payload was missing fields or carried invalid values."""
