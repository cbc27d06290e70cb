from dataclasses import dataclass
from typing import NewType

# Wrap raw float times in types for clarity.
Timestamp = NewType('Timestamp', float)
LapTime = NewType('LapTime', float)

@dataclass
class Lap:
    """Represents a single lap completed by a competitor.

    A lap is produced when a competitor re-enters the start/finish geofence:
      • lap_time: seconds between this crossing and the previous one.
      • completed_at: the wall-clock timestamp of the crossing.
    """
    competitor_id: str
    lap_number: int
    lap_time: LapTime
    completed_at: Timestamp

    def __post_init__(self):
        if self.lap_number < 1:
            raise ValueError("Lap number must be >= 1")
        if self.lap_time < 0:
            raise ValueError("Lap time must not be negative")

    def __str__(self):
        return (f"Competitor {self.competitor_id} Lap {self.lap_number} | "
                f"Time: {self.lap_time:.2f}s")

    def __repr__(self):
        return (f"Lap(competitor_id={self.competitor_id!r}, lap_number={self.lap_number}, "
                f"lap_time={self.lap_time}, completed_at={self.completed_at})")
