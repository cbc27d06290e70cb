"""
Inbound payload validation and outbound message shapes.

Message format examples:
From a client to the server:
{"type":"joinRace","raceId":...,"name":...}
{"type":"updatePosition","lat":...,"lng":...,"speed":...}
{"type":"leaveRace","raceId":...}
{"type":"watchRace","raceId":...}

From the server to clients:
{"type":"connected","competitorId":...}
{"type":"joined","raceId":...,"competitorId":...}
{"type":"leaderboard","raceId":...,"rows":[...]}
{"type":"lap","raceId":...,"competitorId":...,"lapNumber":...,"lapTime":...}
{"type":"error","message":...}
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from race.errors import MalformedTelemetry
from race.geodesy import Coordinate
from race.lap import Lap
from race.lap_detector import StartLine
from race.ranking import LeaderboardRow

# Pub/sub channels are keyed by race id: race:<race_id>
CHANNEL_PREFIX = "race"


def race_channel(race_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{race_id}"


@dataclass(frozen=True)
class JoinRequest:
    race_id: str
    name: str


@dataclass(frozen=True)
class PositionReport:
    position: Coordinate
    speed: float


@dataclass(frozen=True)
class StartLineRequest:
    center: Coordinate
    radius_meters: float


def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedTelemetry("Payload must be a JSON object")
    return payload


def _number(payload: Mapping[str, Any], key: str) -> float:
    if key not in payload:
        raise MalformedTelemetry(f"Missing field: {key}")
    value = payload[key]
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedTelemetry(f"Field {key} must be a number, got {value!r}")
    try:
        value = float(value)
    except OverflowError as e:
        raise MalformedTelemetry(f"Field {key} is out of range") from e
    if not math.isfinite(value):
        raise MalformedTelemetry(f"Field {key} must be finite")
    return value


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedTelemetry(f"Field {key} must be a non-empty string")
    return value.strip()


def _coordinate(payload: Mapping[str, Any]) -> Coordinate:
    lat = _number(payload, "lat")
    lng = _number(payload, "lng")
    try:
        return Coordinate(lat, lng)
    except ValueError as e:
        raise MalformedTelemetry(str(e)) from e


def parse_join(payload: Any) -> JoinRequest:
    payload = _require_mapping(payload)
    return JoinRequest(race_id=_text(payload, "raceId"), name=_text(payload, "name"))


def parse_race_id(payload: Any) -> str:
    return _text(_require_mapping(payload), "raceId")


def parse_position(payload: Any) -> PositionReport:
    payload = _require_mapping(payload)
    position = _coordinate(payload)
    speed = _number(payload, "speed")
    # Location APIs report a negative speed when it is unknown.
    return PositionReport(position=position, speed=max(0.0, speed))


def parse_start_line(payload: Any) -> StartLineRequest:
    payload = _require_mapping(payload)
    return StartLineRequest(
        center=_coordinate(payload),
        radius_meters=_number(payload, "radiusMeters"),
    )


def connected_message(competitor_id: str) -> Dict[str, Any]:
    return {"type": "connected", "competitorId": competitor_id}


def joined_message(race_id: str, competitor_id: str) -> Dict[str, Any]:
    return {"type": "joined", "raceId": race_id, "competitorId": competitor_id}


def leaderboard_message(race_id: str, rows: List[LeaderboardRow]) -> Dict[str, Any]:
    return {
        "type": "leaderboard",
        "raceId": race_id,
        "rows": [row.to_message() for row in rows],
    }


def lap_message(
    race_id: str, lap: Lap, name: str, best_lap: Optional[float] = None
) -> Dict[str, Any]:
    return {
        "type": "lap",
        "raceId": race_id,
        "competitorId": lap.competitor_id,
        "name": name,
        "lapNumber": lap.lap_number,
        "lapTime": round(lap.lap_time, 3),
        "bestLap": round(best_lap, 3) if best_lap is not None else None,
    }


def start_line_payload(start_line: StartLine) -> Dict[str, Any]:
    return {
        "lat": start_line.center.lat,
        "lng": start_line.center.lng,
        "radiusMeters": start_line.radius_meters,
    }


def error_message(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}
