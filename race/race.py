import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from race.competitor import Competitor
from race.errors import ConfigurationError, UnknownCompetitor
from race.geodesy import Coordinate
from race.lap import Lap, Timestamp
from race.lap_detector import StartLine
from race.ranking import LeaderboardRow, rank


@dataclass(frozen=True)
class PositionUpdate:
    """Outcome of applying one telemetry fix to a competitor."""

    competitor_id: str
    lap_count: int
    crossed_line: bool
    lap: Optional[Lap] = None


class RaceSession:
    """Live state of one race: its competitors, start/finish geofence and leaderboard.

    The session itself does no locking. Callers that share a session between
    workers hold `lock` around a mutation and the ranking that follows it
    (SessionRegistry does this).
    """

    def __init__(self, race_id: str, *, clock: Callable[[], float] = time.time):
        self.race_id: str = race_id
        self.start_line: Optional[StartLine] = None
        self.competitors: Dict[str, Competitor] = {}
        self.lock = threading.Lock()
        self._clock = clock

    def set_start_line(self, center: Coordinate, radius_meters: float) -> StartLine:
        if self.start_line is not None:
            raise ConfigurationError(f"Start line for race {self.race_id} is already set")
        line = StartLine(center=center, radius_meters=radius_meters)
        if self.competitors:
            logging.warning(
                f"Start line for race {self.race_id} set after {len(self.competitors)} competitors joined"
            )
        self.start_line = line
        logging.info(f"Race {self.race_id} start line at {center} radius {radius_meters}m")
        return line

    def has_competitor(self, competitor_id: str) -> bool:
        return competitor_id in self.competitors

    def join(self, competitor_id: str, name: str) -> Competitor:
        competitor = self.competitors.get(competitor_id)
        if competitor is not None:
            # Re-join keeps lap history and position, only the label changes.
            competitor.name = name
            logging.debug(f"Competitor {competitor_id} re-joined race {self.race_id} as {name}")
            return competitor

        competitor = Competitor(competitor_id=competitor_id, name=name)
        self.competitors[competitor_id] = competitor
        logging.info(f"{name} joined race {self.race_id} ({len(self.competitors)} competitors)")
        return competitor

    def apply_position(
        self,
        competitor_id: str,
        position: Coordinate,
        speed: float,
        timestamp: Optional[float] = None,
    ) -> PositionUpdate:
        competitor = self.competitors.get(competitor_id)
        if competitor is None:
            raise UnknownCompetitor(competitor_id, self.race_id)

        now = Timestamp(self._clock() if timestamp is None else timestamp)
        crossing, lap = competitor.observe(position, speed, now, self.start_line)
        if lap is not None:
            logging.info(f"Race {self.race_id}: {lap}")
        elif crossing is not None:
            logging.info(f"Race {self.race_id}: {competitor.name} started lap timing")

        return PositionUpdate(
            competitor_id=competitor_id,
            lap_count=competitor.lap_count,
            crossed_line=crossing is not None,
            lap=lap,
        )

    def leave(self, competitor_id: str) -> bool:
        """Removes the competitor. Returns False if it was not in the race."""
        competitor = self.competitors.pop(competitor_id, None)
        if competitor is None:
            return False
        logging.info(f"{competitor.name} left race {self.race_id}")
        return True

    def snapshot(self) -> List[Competitor]:
        """Copies of every competitor, safe to rank after the lock is released."""
        return [
            dataclasses.replace(c, lap_times=list(c.lap_times))
            for c in self.competitors.values()
        ]

    def leaderboard(self) -> List[LeaderboardRow]:
        return rank(self.snapshot())

    def __len__(self) -> int:
        return len(self.competitors)

    def __str__(self) -> str:
        return (
            f"RaceSession(race_id={self.race_id}, "
            f"competitors={len(self.competitors)}, "
            f"start_line={'set' if self.start_line else 'unset'})"
        )

    def __repr__(self) -> str:
        return (
            f"RaceSession(race_id={self.race_id!r}, "
            f"start_line={self.start_line!r}, "
            f"competitors=[{', '.join(repr(c) for c in self.competitors.values())}])"
        )
