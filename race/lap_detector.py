"""
Start/finish geofence crossing detection.

The detector is a two-state machine. Only the OUTSIDE -> INSIDE edge produces
a crossing, so a competitor idling inside the geofence is counted once no
matter how many fixes it sends from there.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from race.errors import ConfigurationError
from race.geodesy import Coordinate, distance_meters
from race.lap import Timestamp


class GeofenceState(Enum):
    OUTSIDE = "outside"
    INSIDE = "inside"


@dataclass(frozen=True)
class StartLine:
    """A circular start/finish geofence."""

    center: Coordinate
    radius_meters: float

    def __post_init__(self):
        if not math.isfinite(self.radius_meters) or self.radius_meters <= 0:
            raise ConfigurationError(
                f"Start line radius must be positive, got {self.radius_meters}"
            )

    def contains(self, position: Coordinate) -> bool:
        return distance_meters(position, self.center) < self.radius_meters


@dataclass(frozen=True)
class LineCrossing:
    """Emitted when a competitor enters the start/finish geofence."""

    timestamp: Timestamp
    distance_meters: float


def evaluate(
    prior: GeofenceState,
    position: Coordinate,
    timestamp: Timestamp,
    start_line: StartLine,
) -> Tuple[GeofenceState, Optional[LineCrossing]]:
    """
    Compute the next geofence state for a new position sample.

    Args:
        prior: State after the previous sample
        position: The new fix
        timestamp: When the fix was accepted
        start_line: Geofence to test against

    Returns:
        (next_state, crossing) where crossing is set only on entry
    """
    d = distance_meters(position, start_line.center)
    if d >= start_line.radius_meters:
        return GeofenceState.OUTSIDE, None
    if prior == GeofenceState.OUTSIDE:
        return GeofenceState.INSIDE, LineCrossing(timestamp=timestamp, distance_meters=d)
    return GeofenceState.INSIDE, None
