import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from race.errors import ConfigurationError, MalformedTelemetry
from race.telemetry import StartLineRequest, parse_start_line

DEFAULT_PORT = 3000


@dataclass
class ServerConfig:
    port: int = DEFAULT_PORT
    redis_socket: Optional[str] = None
    redis_url: Optional[str] = None
    start_lines: Dict[str, StartLineRequest] = field(default_factory=dict)


def load_config(config_path: Path) -> ServerConfig:
    """
    Reads server settings and per-race start lines from a JSON file.

    Example:
    {
      "port": 3000,
      "redis_socket": "./redis.sock",
      "races": {
        "race123": {"startLine": {"lat": 37.7749, "lng": -122.4194, "radiusMeters": 10}}
      }
    }

    A missing file gives the defaults.
    """
    if not config_path.exists():
        logging.warning(f"Config file {config_path} does not exist, using defaults")
        return ServerConfig()

    try:
        config_data = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read {config_path}: {e}") from e
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"{config_path} must contain a JSON object")

    try:
        port = int(config_data.get("port", DEFAULT_PORT))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid port in {config_path}: {e}") from e

    config = ServerConfig(
        port=port,
        redis_socket=config_data.get("redis_socket"),
        redis_url=config_data.get("redis_url"),
    )

    races = config_data.get("races", {})
    if not isinstance(races, dict):
        raise ConfigurationError("races must be an object keyed by race id")
    for race_id, race_data in races.items():
        if not isinstance(race_data, dict) or "startLine" not in race_data:
            continue
        try:
            config.start_lines[race_id] = parse_start_line(race_data["startLine"])
        except MalformedTelemetry as e:
            raise ConfigurationError(f"Invalid start line for race {race_id}: {e}") from e

    logging.info(f"Loaded config from {config_path}: {len(config.start_lines)} start lines")
    return config
