import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set

from race.errors import UnknownCompetitor
from race.geodesy import Coordinate
from race.lap_detector import StartLine
from race.race import PositionUpdate, RaceSession
from race.ranking import LeaderboardRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RaceUpdate:
    """A position update applied to one race, with the leaderboard computed right after it."""

    race_id: str
    update: PositionUpdate
    leaderboard: List[LeaderboardRow]


class SessionRegistry:
    """
    Process-wide map from race id to RaceSession.

    Sessions are created on first access and never removed. Every mutation of
    a session and the ranking that follows it happen under that session's
    lock; the registry lock only guards the session map and the
    competitor -> races index.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._sessions: Dict[str, RaceSession] = {}
        self._memberships: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_competitor_id() -> str:
        return uuid.uuid4().hex

    def get_or_create(self, race_id: str) -> RaceSession:
        with self._lock:
            session = self._sessions.get(race_id)
            if session is None:
                session = RaceSession(race_id, clock=self._clock)
                self._sessions[race_id] = session
                logger.info(f"Created session for race {race_id}")
            return session

    def get(self, race_id: str) -> Optional[RaceSession]:
        with self._lock:
            return self._sessions.get(race_id)

    def race_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def races_for(self, competitor_id: str) -> List[str]:
        with self._lock:
            return sorted(self._memberships.get(competitor_id, ()))

    def configure_start_line(
        self, race_id: str, center: Coordinate, radius_meters: float
    ) -> StartLine:
        session = self.get_or_create(race_id)
        with session.lock:
            return session.set_start_line(center, radius_meters)

    def join(self, race_id: str, competitor_id: str, name: str) -> List[LeaderboardRow]:
        session = self.get_or_create(race_id)
        with session.lock:
            session.join(competitor_id, name)
            with self._lock:
                self._memberships.setdefault(competitor_id, set()).add(race_id)
            return session.leaderboard()

    def apply_position(
        self,
        competitor_id: str,
        position: Coordinate,
        speed: float,
        timestamp: Optional[float] = None,
    ) -> List[RaceUpdate]:
        """Applies a fix to every race the competitor has joined."""
        race_ids = self.races_for(competitor_id)
        if not race_ids:
            raise UnknownCompetitor(competitor_id)

        updates = []
        for race_id in race_ids:
            session = self.get(race_id)
            if session is None:
                continue
            with session.lock:
                if not session.has_competitor(competitor_id):
                    # Left this race between the index lookup and taking the lock.
                    logger.debug(f"Competitor {competitor_id} no longer in race {race_id}")
                    continue
                update = session.apply_position(competitor_id, position, speed, timestamp)
                updates.append(RaceUpdate(race_id, update, session.leaderboard()))
        if not updates:
            raise UnknownCompetitor(competitor_id)
        return updates

    def remove(self, race_id: str, competitor_id: str) -> Optional[List[LeaderboardRow]]:
        """
        Removes the competitor from one race.

        Returns the updated leaderboard, or None if the competitor was not in
        that race (duplicate disconnects are not an error).
        """
        session = self.get(race_id)
        if session is None:
            return None
        with session.lock:
            removed = session.leave(competitor_id)
            with self._lock:
                races = self._memberships.get(competitor_id)
                if races is not None:
                    races.discard(race_id)
                    if not races:
                        del self._memberships[competitor_id]
            if not removed:
                return None
            return session.leaderboard()

    def disconnect(self, competitor_id: str) -> Dict[str, List[LeaderboardRow]]:
        """Leaves every race the competitor joined; returns the new leaderboards by race."""
        leaderboards = {}
        for race_id in self.races_for(competitor_id):
            rows = self.remove(race_id, competitor_id)
            if rows is not None:
                leaderboards[race_id] = rows
        return leaderboards

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
