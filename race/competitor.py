from dataclasses import dataclass, field
from typing import List, Optional

from race.geodesy import Coordinate
from race.lap import Lap, LapTime, Timestamp
from race.lap_detector import GeofenceState, LineCrossing, StartLine, evaluate


@dataclass
class Competitor:
    """Represents a racer in a live session: identity, last fix and lap history."""

    competitor_id: str
    name: str
    position: Optional[Coordinate] = None
    speed: float = 0.0
    last_update: Optional[Timestamp] = None
    crossing_state: GeofenceState = GeofenceState.OUTSIDE
    lap_start_time: Optional[Timestamp] = None
    lap_times: List[LapTime] = field(default_factory=list)

    @property
    def lap_count(self) -> int:
        return len(self.lap_times)

    @property
    def inside_geofence(self) -> bool:
        return self.crossing_state == GeofenceState.INSIDE

    @property
    def last_lap(self) -> Optional[LapTime]:
        return self.lap_times[-1] if self.lap_times else None

    @property
    def best_lap(self) -> Optional[LapTime]:
        return min(self.lap_times) if self.lap_times else None

    def observe(
        self,
        position: Coordinate,
        speed: float,
        timestamp: Timestamp,
        start_line: Optional[StartLine],
    ) -> tuple[Optional[LineCrossing], Optional[Lap]]:
        """Record a new fix and run it through the start/finish detector.

        Returns the line crossing (if the fix entered the geofence) and the
        lap it completed (None for the first crossing, which only starts the clock).
        """
        self.position = position
        self.speed = speed
        self.last_update = timestamp

        if start_line is None:
            return None, None

        self.crossing_state, crossing = evaluate(
            self.crossing_state, position, timestamp, start_line
        )
        if crossing is None:
            return None, None
        return crossing, self._record_crossing(crossing.timestamp)

    def _record_crossing(self, now: Timestamp) -> Optional[Lap]:
        if self.lap_start_time is None:
            self.lap_start_time = now
            return None

        lap_time = LapTime(max(0.0, now - self.lap_start_time))
        self.lap_times.append(lap_time)
        self.lap_start_time = now
        return Lap(
            competitor_id=self.competitor_id,
            lap_number=self.lap_count,
            lap_time=lap_time,
            completed_at=now,
        )

    def __str__(self) -> str:
        return f"{self.name} (ID: {self.competitor_id})"
