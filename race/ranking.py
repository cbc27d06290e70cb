import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from race.competitor import Competitor
from race.geodesy import Coordinate, distance_meters


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    competitor_id: str
    name: str
    position: Optional[Coordinate]
    speed: float
    distance_to_leader: float
    gap_seconds: float
    lap_count: int = 0
    last_lap: Optional[float] = None
    best_lap: Optional[float] = None

    def to_message(self) -> Dict[str, Any]:
        """Wire shape of a leaderboard row: distance in whole metres, gap to 0.1s."""
        return {
            "id": self.competitor_id,
            "name": self.name,
            "lat": self.position.lat if self.position else None,
            "lng": self.position.lng if self.position else None,
            "speed": self.speed,
            "dist": int(math.floor(self.distance_to_leader + 0.5)),
            "gapSec": round(self.gap_seconds, 1),
            "rank": self.rank,
            "lapCount": self.lap_count,
            "lastLap": self.last_lap,
            "bestLap": self.best_lap,
        }


def progress_key(competitor: Competitor) -> Tuple[int, bool, float]:
    """Sort key for race progress: most laps, then whoever started the current lap first."""
    started = competitor.lap_start_time is not None
    return (
        -competitor.lap_count,
        not started,
        competitor.lap_start_time if started else 0.0,
    )


def gap_seconds(distance: float, speed: float) -> float:
    # Speed-based estimate; a stopped competitor has no defined gap.
    if speed > 0:
        return distance / speed
    return 0.0


def rank(competitors: Sequence[Competitor]) -> List[LeaderboardRow]:
    """
    Returns the leaderboard for a point-in-time snapshot of competitors.

    The leader is the located competitor with the most progress (see
    progress_key); ties go to whoever joined first. Everyone else is ordered
    by their distance to the leader, and competitors that have not reported
    a position yet trail the table in join order.
    """
    located = [c for c in competitors if c.position is not None]
    unplaced = [c for c in competitors if c.position is None]

    ordered: List[Tuple[Competitor, float]] = []
    if located:
        # min() keeps the first of equal keys, so join order breaks ties.
        leader = min(located, key=progress_key)
        assert leader.position is not None
        distances = [
            0.0 if c is leader else distance_meters(leader.position, c.position)  # type: ignore[arg-type]
            for c in located
        ]
        indexed = sorted(
            range(len(located)),
            key=lambda i: (located[i] is not leader, distances[i]),
        )
        ordered = [(located[i], distances[i]) for i in indexed]
    ordered.extend((c, 0.0) for c in unplaced)

    rows = []
    for position, (competitor, distance) in enumerate(ordered, start=1):
        rows.append(
            LeaderboardRow(
                rank=position,
                competitor_id=competitor.competitor_id,
                name=competitor.name,
                position=competitor.position,
                speed=competitor.speed,
                distance_to_leader=distance,
                gap_seconds=gap_seconds(distance, competitor.speed) if position > 1 else 0.0,
                lap_count=competitor.lap_count,
                last_lap=competitor.last_lap,
                best_lap=competitor.best_lap,
            )
        )
    return rows
