#!/usr/bin/env python3
"""
WebSocket server for live race tracking.
Competitors stream GPS fixes over /ws. Every accepted fix updates the race
session, re-ranks it and broadcasts the leaderboard to all WebSocket
subscribers of that race. When Redis is configured the same messages are
published on the race's channel (race:<race_id>).
"""

import argparse
import asyncio
import json
import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Iterable

import redis.asyncio as redis
from aiohttp import web  # type: ignore[import-untyped]

from race import telemetry
from race.config import DEFAULT_PORT, load_config
from race.errors import ConfigurationError, MalformedTelemetry, UnknownCompetitor
from race.ranking import LeaderboardRow
from race.registry import SessionRegistry

# Configuration
CONFIG_PATH = Path("config.json")

# Logging setup
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class RaceGapServer:
    def __init__(
        self,
        registry: SessionRegistry,
        port: int = DEFAULT_PORT,
        redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
    ) -> None:
        self.registry: SessionRegistry = registry
        self.port: int = port
        self.app: web.Application = web.Application()
        self.redis_client: redis.Redis | None = redis_client  # type: ignore[type-arg]
        self.subscribers: dict[str, set[web.WebSocketResponse]] = {}
        # Held from applying a change until its broadcasts are sent
        self.race_locks: dict[str, asyncio.Lock] = {}

        # Setup routes
        self.app.router.add_get("/ws", self.websocket_handler)

        # REST API routes
        self.app.router.add_get("/api/races", self.get_races)
        self.app.router.add_get("/api/races/{race_id}/leaderboard", self.get_leaderboard)
        self.app.router.add_put("/api/races/{race_id}/start_line", self.put_start_line)

        self.app.on_cleanup.append(self.close_redis)

    async def get_races(self, request: web.Request) -> web.Response:
        """List every live race session"""
        races = []
        for race_id in self.registry.race_ids():
            session = self.registry.get(race_id)
            if session is None:
                continue
            with session.lock:
                races.append(
                    {
                        "raceId": race_id,
                        "competitors": len(session),
                        "startLine": telemetry.start_line_payload(session.start_line)
                        if session.start_line
                        else None,
                    }
                )
        return web.json_response({"races": races})

    async def get_leaderboard(self, request: web.Request) -> web.Response:
        """Get the current leaderboard for a race"""
        race_id = request.match_info["race_id"]
        session = self.registry.get(race_id)
        if session is None:
            return web.json_response({"error": f"Unknown race: {race_id}"}, status=404)
        with session.lock:
            rows = session.leaderboard()
        return web.json_response(telemetry.leaderboard_message(race_id, rows))

    async def put_start_line(self, request: web.Request) -> web.Response:
        """Configure the start/finish geofence of a race (once per race)"""
        race_id = request.match_info["race_id"]
        try:
            payload = await request.json()
            line_request = telemetry.parse_start_line(payload)
            start_line = self.registry.configure_start_line(
                race_id, line_request.center, line_request.radius_meters
            )
        except MalformedTelemetry as e:
            return web.json_response({"error": str(e)}, status=400)
        except ValueError:
            # JSONDecodeError, or an integer literal too long to parse
            return web.json_response({"error": "Body must be JSON"}, status=400)
        except ConfigurationError as e:
            return web.json_response({"error": str(e)}, status=409)

        return web.json_response(
            {"raceId": race_id, "startLine": telemetry.start_line_payload(start_line)}
        )

    async def websocket_handler(self, request: web.Request) -> web.WebSocketResponse:
        """Handle one competitor or spectator connection"""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        competitor_id = self.registry.new_competitor_id()
        logger.info(f"Client connected: {competitor_id}")

        try:
            await ws.send_json(telemetry.connected_message(competitor_id))

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    await self.handle_message(competitor_id, ws, msg.data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
        finally:
            await self.handle_disconnect(competitor_id, ws)
            logger.info(f"Client disconnected: {competitor_id}")

        return ws

    async def handle_message(
        self, competitor_id: str, ws: web.WebSocketResponse, data: str
    ) -> None:
        try:
            msg = json.loads(data)
            if not isinstance(msg, dict):
                raise MalformedTelemetry("Message must be a JSON object")
            msg_type = msg.get("type")

            if msg_type == "updatePosition":
                await self.handle_update_position(competitor_id, msg)
            elif msg_type == "joinRace":
                await self.handle_join(competitor_id, ws, msg)
            elif msg_type == "watchRace":
                await self.handle_watch(ws, msg)
            elif msg_type == "leaveRace":
                race_id = telemetry.parse_race_id(msg)
                async with self.race_lock(race_id):
                    self.unsubscribe(race_id, ws)
                    rows = self.registry.remove(race_id, competitor_id)
                    if rows is not None:
                        await self.broadcast_leaderboard(race_id, rows)
            else:
                raise MalformedTelemetry(f"Unknown message type: {msg_type}")
        except MalformedTelemetry as e:
            logger.warning(f"Rejected message from {competitor_id}: {e}")
            await self.send(ws, telemetry.error_message(str(e)))
        except ValueError:
            # JSONDecodeError, or an integer literal too long to parse
            logger.error(f"Invalid JSON from {competitor_id}: {data[:200]}")
            await self.send(ws, telemetry.error_message("Invalid JSON"))
        except UnknownCompetitor as e:
            # Updates from a connection that has not joined (or already left) are dropped.
            logger.debug(f"Dropped message: {e}")

    def race_lock(self, race_id: str) -> asyncio.Lock:
        return self.race_locks.setdefault(race_id, asyncio.Lock())

    async def lock_races(self, stack: AsyncExitStack, race_ids: Iterable[str]) -> None:
        """Acquire several race locks, always in sorted order"""
        for race_id in sorted(race_ids):
            await stack.enter_async_context(self.race_lock(race_id))

    async def handle_join(
        self, competitor_id: str, ws: web.WebSocketResponse, msg: dict[str, Any]
    ) -> None:
        join = telemetry.parse_join(msg)
        async with self.race_lock(join.race_id):
            rows = self.registry.join(join.race_id, competitor_id, join.name)
            self.subscribe(join.race_id, ws)
            logger.info(f"{join.name} joined {join.race_id}")
            await self.send(ws, telemetry.joined_message(join.race_id, competitor_id))
            await self.broadcast_leaderboard(join.race_id, rows)

    async def handle_watch(self, ws: web.WebSocketResponse, msg: dict[str, Any]) -> None:
        race_id = telemetry.parse_race_id(msg)
        # Watching does not create a session; an unknown race has no rows yet
        session = self.registry.get(race_id)
        if session is None:
            self.subscribe(race_id, ws)
            await self.send(ws, telemetry.leaderboard_message(race_id, []))
            return
        async with self.race_lock(race_id):
            self.subscribe(race_id, ws)
            with session.lock:
                rows = session.leaderboard()
            await self.send(ws, telemetry.leaderboard_message(race_id, rows))

    async def handle_update_position(self, competitor_id: str, msg: dict[str, Any]) -> None:
        report = telemetry.parse_position(msg)
        async with AsyncExitStack() as stack:
            await self.lock_races(stack, self.registry.races_for(competitor_id))
            updates = self.registry.apply_position(competitor_id, report.position, report.speed)
            for race_update in updates:
                lap = race_update.update.lap
                if lap is not None:
                    row = _find_row(race_update.leaderboard, competitor_id)
                    await self.broadcast(
                        race_update.race_id,
                        telemetry.lap_message(
                            race_update.race_id,
                            lap,
                            row.name if row else competitor_id,
                            row.best_lap if row else None,
                        ),
                    )
                await self.broadcast_leaderboard(race_update.race_id, race_update.leaderboard)

    async def handle_disconnect(self, competitor_id: str, ws: web.WebSocketResponse) -> None:
        for race_id in list(self.subscribers):
            self.unsubscribe(race_id, ws)
        async with AsyncExitStack() as stack:
            await self.lock_races(stack, self.registry.races_for(competitor_id))
            for race_id, rows in self.registry.disconnect(competitor_id).items():
                await self.broadcast_leaderboard(race_id, rows)

    def subscribe(self, race_id: str, ws: web.WebSocketResponse) -> None:
        self.subscribers.setdefault(race_id, set()).add(ws)

    def unsubscribe(self, race_id: str, ws: web.WebSocketResponse) -> None:
        subscribers = self.subscribers.get(race_id)
        if subscribers is None:
            return
        subscribers.discard(ws)
        if not subscribers:
            del self.subscribers[race_id]

    async def send(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> bool:
        if ws.closed:
            return False
        try:
            await ws.send_json(data)
            return True
        except (ConnectionError, RuntimeError) as e:
            logger.error(f"Error sending to WebSocket: {e}")
            return False

    async def broadcast_leaderboard(self, race_id: str, rows: list[LeaderboardRow]) -> None:
        await self.broadcast(race_id, telemetry.leaderboard_message(race_id, rows))

    async def broadcast(self, race_id: str, data: dict[str, Any]) -> None:
        """Broadcast data to every subscriber of a race"""
        subscribers = list(self.subscribers.get(race_id, ()))
        logger.debug(f"Broadcasting {data.get('type')} to {len(subscribers)} clients of {race_id}")

        # Remove disconnected websockets
        disconnected = set()
        for ws in subscribers:
            if not await self.send(ws, data):
                disconnected.add(ws)
        for ws in disconnected:
            self.unsubscribe(race_id, ws)

        await self.publish(race_id, data)

    async def publish(self, race_id: str, data: dict[str, Any]) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.publish(telemetry.race_channel(race_id), json.dumps(data))
        except redis.RedisError as e:
            logger.error(f"Failed to publish to Redis: {e}")

    async def close_redis(self, app: web.Application) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()

    def run(self) -> None:
        """Start the web server"""
        logger.info(f"Starting RaceGap server on http://localhost:{self.port}")
        web.run_app(self.app, port=self.port)


def _find_row(rows: list[LeaderboardRow], competitor_id: str) -> LeaderboardRow | None:
    for row in rows:
        if row.competitor_id == competitor_id:
            return row
    return None


def make_redis_client(
    redis_socket: str | None, redis_url: str | None
) -> redis.Redis | None:  # type: ignore[type-arg]
    if redis_url:
        return redis.from_url(redis_url, decode_responses=True)
    if redis_socket:
        return redis.Redis(unix_socket_path=redis_socket, decode_responses=True)
    return None


def main() -> None:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Start the RaceGap live race server.")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="Path to config.json")
    parser.add_argument("--port", type=int, help="HTTP/WebSocket port")
    parser.add_argument("--redis-socket", help="Publish race messages to Redis on this unix socket")
    parser.add_argument("--redis-url", help="Publish race messages to Redis at this URL")
    args = parser.parse_args()

    config = load_config(args.config)
    registry = SessionRegistry()
    for race_id, line in config.start_lines.items():
        registry.configure_start_line(race_id, line.center, line.radius_meters)

    redis_client = make_redis_client(
        args.redis_socket or config.redis_socket, args.redis_url or config.redis_url
    )
    if redis_client is not None:
        logger.info("Publishing race messages to Redis")

    server = RaceGapServer(
        registry, port=args.port or config.port, redis_client=redis_client
    )
    server.run()


if __name__ == "__main__":
    main()
