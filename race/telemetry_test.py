import json
import tempfile
import unittest
from pathlib import Path

from race.config import DEFAULT_PORT, load_config
from race.errors import ConfigurationError, MalformedTelemetry
from race.geodesy import Coordinate
from race.lap import Lap, LapTime, Timestamp
from race.telemetry import (
    lap_message,
    parse_join,
    parse_position,
    parse_race_id,
    parse_start_line,
    race_channel,
)


class TestParsePosition(unittest.TestCase):
    def test_valid_payload(self):
        report = parse_position({"lat": 37.7749, "lng": -122.4194, "speed": 25})
        self.assertEqual(report.position, Coordinate(37.7749, -122.4194))
        self.assertEqual(report.speed, 25.0)
        self.assertIsInstance(report.speed, float)

    def test_missing_fields(self):
        for payload in ({"lng": 1.0, "speed": 1.0}, {"lat": 1.0, "speed": 1.0}, {"lat": 1.0, "lng": 1.0}):
            with self.assertRaises(MalformedTelemetry):
                parse_position(payload)

    def test_non_numeric_fields(self):
        for payload in (
            {"lat": "37.7", "lng": 1.0, "speed": 1.0},
            {"lat": 1.0, "lng": None, "speed": 1.0},
            {"lat": 1.0, "lng": 1.0, "speed": True},
            {"lat": float("nan"), "lng": 1.0, "speed": 1.0},
            {"lat": 1.0, "lng": 1.0, "speed": float("inf")},
        ):
            with self.assertRaises(MalformedTelemetry):
                parse_position(payload)

    def test_integer_too_large_for_float(self):
        huge = 10 ** 400
        for payload in (
            {"lat": huge, "lng": 1.0, "speed": 1.0},
            {"lat": 1.0, "lng": 1.0, "speed": -huge},
        ):
            with self.assertRaises(MalformedTelemetry):
                parse_position(payload)
        with self.assertRaises(MalformedTelemetry):
            parse_start_line({"lat": 1.0, "lng": 1.0, "radiusMeters": huge})

    def test_out_of_range_coordinate(self):
        with self.assertRaises(MalformedTelemetry):
            parse_position({"lat": 95.0, "lng": 0.0, "speed": 1.0})

    def test_not_an_object(self):
        for payload in (None, [], "lat=1", 3):
            with self.assertRaises(MalformedTelemetry):
                parse_position(payload)

    def test_negative_speed_means_stopped(self):
        report = parse_position({"lat": 0.0, "lng": 0.0, "speed": -1})
        self.assertEqual(report.speed, 0.0)

    def test_malformed_is_a_value_error(self):
        with self.assertRaises(ValueError):
            parse_position({})


class TestParseOther(unittest.TestCase):
    def test_join(self):
        join = parse_join({"raceId": "race123", "name": " Car A "})
        self.assertEqual(join.race_id, "race123")
        self.assertEqual(join.name, "Car A")

    def test_join_requires_name_and_race(self):
        for payload in ({"raceId": "race123"}, {"name": "Car A"}, {"raceId": "", "name": "A"}, {"raceId": 5, "name": "A"}):
            with self.assertRaises(MalformedTelemetry):
                parse_join(payload)

    def test_race_id(self):
        self.assertEqual(parse_race_id({"raceId": "r1"}), "r1")
        with self.assertRaises(MalformedTelemetry):
            parse_race_id({})

    def test_start_line(self):
        line = parse_start_line({"lat": 37.7749, "lng": -122.4194, "radiusMeters": 10})
        self.assertEqual(line.center, Coordinate(37.7749, -122.4194))
        self.assertEqual(line.radius_meters, 10.0)
        with self.assertRaises(MalformedTelemetry):
            parse_start_line({"lat": 37.7749, "lng": -122.4194})

    def test_lap_message(self):
        lap = Lap(competitor_id="a", lap_number=2, lap_time=LapTime(41.23456), completed_at=Timestamp(99.0))
        message = lap_message("race123", lap, "Car A", best_lap=40.0)
        self.assertEqual(
            message,
            {
                "type": "lap",
                "raceId": "race123",
                "competitorId": "a",
                "name": "Car A",
                "lapNumber": 2,
                "lapTime": 41.235,
                "bestLap": 40.0,
            },
        )

    def test_laps_are_equal_by_value_but_unordered(self):
        first = Lap(competitor_id="a", lap_number=1, lap_time=LapTime(40.0), completed_at=Timestamp(41.0))
        same = Lap(competitor_id="a", lap_number=1, lap_time=LapTime(40.0), completed_at=Timestamp(41.0))
        other_car = Lap(competitor_id="b", lap_number=1, lap_time=LapTime(40.0), completed_at=Timestamp(41.0))
        self.assertEqual(first, same)
        self.assertNotEqual(first, other_car)
        with self.assertRaises(TypeError):
            first < other_car  # noqa: B015

    def test_race_channel(self):
        self.assertEqual(race_channel("race123"), "race:race123")


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_path = Path(self.tmp.name) / "config.json"

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_gives_defaults(self):
        with self.assertLogs(level="WARNING"):
            config = load_config(self.config_path)
        self.assertEqual(config.port, DEFAULT_PORT)
        self.assertIsNone(config.redis_socket)
        self.assertEqual(config.start_lines, {})

    def test_reads_start_lines(self):
        self.config_path.write_text(json.dumps({
            "port": 8080,
            "redis_socket": "./redis.sock",
            "races": {
                "race123": {"startLine": {"lat": 37.7749, "lng": -122.4194, "radiusMeters": 10}},
                "open-practice": {},
            },
        }))
        config = load_config(self.config_path)
        self.assertEqual(config.port, 8080)
        self.assertEqual(config.redis_socket, "./redis.sock")
        self.assertEqual(list(config.start_lines), ["race123"])
        self.assertEqual(config.start_lines["race123"].radius_meters, 10.0)

    def test_invalid_json(self):
        self.config_path.write_text("{not json")
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_invalid_start_line(self):
        self.config_path.write_text(json.dumps({"races": {"r1": {"startLine": {"lat": "north"}}}}))
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)


if __name__ == "__main__":
    unittest.main()
