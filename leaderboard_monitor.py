import argparse
import asyncio
import json
import logging
from typing import Any

import redis.asyncio as redis
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, Static, TabbedContent, TabPane

from race.telemetry import race_channel

REDIS_SOCKET_PATH = "./redis.sock"
MAX_LAP_EVENTS = 50


def format_lap_time(seconds: float | None) -> str:
    if seconds is None:
        return ""
    minutes = int(seconds // 60)
    return f"{minutes}:{seconds - minutes * 60:04.1f}"


class LapEventsDisplay(Static):
    laps: reactive[list[Any]] = reactive([])  # type: ignore[valid-type]

    def render(self) -> str:
        if not self.laps:
            return "No laps yet."
        lines = ["Lap Events:"]
        for lap in self.laps:
            lines.append(
                f"{lap['name']} Lap {lap['lapNumber']} | Time: {format_lap_time(lap['lapTime'])} "
                f"| Best: {format_lap_time(lap.get('bestLap'))}"
            )
        return "\n".join(lines)


class LeaderboardDisplay(DataTable[Any]):  # type: ignore[type-arg]
    leaderboard: reactive[list[Any]] = reactive([])  # type: ignore[valid-type]

    def on_leaderboard_changed(self) -> None:
        self.clear(columns=True)
        self.add_columns(
            "Position",
            "Competitor",
            "Gap (s)",
            "Distance (m)",
            "Speed (m/s)",
            "Laps",
            "Last Lap",
            "Best Lap",
        )
        for row in self.leaderboard:
            self.add_row(
                row["rank"],
                row["name"],
                "Leader" if row["rank"] == 1 else f"+{row['gapSec']:.1f}",
                row["dist"],
                f"{row['speed']:.1f}",
                row["lapCount"],
                format_lap_time(row.get("lastLap")),
                format_lap_time(row.get("bestLap")),
            )

    def watch_leaderboard(self, leaderboard) -> None:
        self.on_leaderboard_changed()


class LeaderboardMonitor(App[Any]):  # type: ignore[type-arg]
    TITLE = "RaceGap Monitor"
    CSS = """
    #tabbed_content {
        height: 1fr;
        padding: 1 2;
    }

    LeaderboardDisplay {
        color: $text-primary;
    }
    """

    BINDINGS = [
        Binding("c", "clear_laps", "Clear Laps"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, *, race_id: str, redis_client: redis.Redis, **kwargs: Any):  # type: ignore[type-arg]
        super().__init__(**kwargs)
        self.race_id = race_id
        self.redis_client = redis_client
        self.sub_title = f"Race {race_id}"
        self._listener_task: asyncio.Task[None] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            with TabbedContent(id="tabbed_content"):
                with TabPane("Leaderboard", id="leaderboard_tab"):
                    yield LeaderboardDisplay(id="leaderboard")
                with TabPane("Laps", id="laps_tab"):
                    yield LapEventsDisplay(id="lap_events")
        yield Footer()

    async def on_mount(self) -> None:
        self._listener_task = asyncio.create_task(self.race_listener())

    async def on_unmount(self) -> None:
        if self._listener_task is not None:
            self._listener_task.cancel()

    def action_clear_laps(self) -> None:
        self.query_one(LapEventsDisplay).laps = []

    def handle_race_message(self, msg: dict[str, Any]) -> None:
        msg_type = msg.get("type")
        if msg_type == "leaderboard":
            self.query_one(LeaderboardDisplay).leaderboard = msg.get("rows", [])
        elif msg_type == "lap":
            logging.info(f"Lap message received: {msg}")
            display = self.query_one(LapEventsDisplay)
            display.laps = ([msg] + display.laps)[:MAX_LAP_EVENTS]
        else:
            logging.debug(f"Unknown message type: {msg}")

    async def race_listener(self) -> None:
        """Subscribe to the race's Redis channel and feed the displays."""
        channel = race_channel(self.race_id)
        pubsub = self.redis_client.pubsub()
        try:
            await pubsub.subscribe(channel)
            logging.info(f"Subscribed to Redis channel: {channel}")

            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    try:
                        self.handle_race_message(json.loads(message["data"]))
                    except json.JSONDecodeError:
                        logging.error(f"Invalid JSON from Redis: {message['data']}")

                await asyncio.sleep(0.01)
        except redis.RedisError as e:
            logging.error(f"Redis listener error: {e}")
            self.notify(f"Redis error: {e}", severity="error")
        except asyncio.CancelledError:
            logging.info("Race listener cancelled")
        finally:
            await pubsub.aclose()
            await self.redis_client.aclose()
            logging.info("Redis connections closed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Watch a live RaceGap leaderboard.")
    parser.add_argument("race_id", help="Race id to watch")
    parser.add_argument("--redis-socket", default=REDIS_SOCKET_PATH)
    parser.add_argument("--redis-url", help="Connect to Redis at this URL instead of a socket")
    args = parser.parse_args()

    # The TUI owns the terminal, so log to a file
    logging.basicConfig(
        filename="monitor.log",
        filemode="a",
        format="%(asctime)s %(levelname)s:%(message)s",
        level=logging.INFO,
    )

    if args.redis_url:
        client = redis.from_url(args.redis_url, decode_responses=True)
    else:
        client = redis.Redis(unix_socket_path=args.redis_socket, decode_responses=True)

    LeaderboardMonitor(race_id=args.race_id, redis_client=client).run()
