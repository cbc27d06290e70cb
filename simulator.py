#!/usr/bin/env python3
"""
Race simulator for the RaceGap server.
Connects one WebSocket per simulated car, configures the race start line and
drives every car around a circular course that passes through it, so laps
and gaps can be watched without real GPS devices.
"""

import argparse
import asyncio
import logging
import math
from dataclasses import dataclass

from aiohttp import ClientError, ClientSession, ClientWebSocketResponse, WSMsgType

SERVER_URL = "http://localhost:3000"
RACE_ID = "race123"
START_LINE = (37.7749, -122.4194)
START_RADIUS_METERS = 10.0
COURSE_RADIUS_METERS = 150.0
METERS_PER_DEGREE_LAT = 111_320.0

logger = logging.getLogger("simulator")


@dataclass
class SimulatedCar:
    """A car lapping a circle whose southernmost point is the start line."""

    name: str
    speed: float  # m/s
    course_radius: float = COURSE_RADIUS_METERS
    angle: float = 0.0

    def advance(self, seconds: float) -> None:
        self.angle += self.speed * seconds / self.course_radius

    def position(self, origin: tuple[float, float] = START_LINE) -> tuple[float, float]:
        north = self.course_radius * (1 - math.cos(self.angle))
        east = self.course_radius * math.sin(self.angle)
        lat = origin[0] + north / METERS_PER_DEGREE_LAT
        lng = origin[1] + east / (METERS_PER_DEGREE_LAT * math.cos(math.radians(origin[0])))
        return lat, lng

    def telemetry(self) -> dict[str, float | str]:
        lat, lng = self.position()
        return {"type": "updatePosition", "lat": lat, "lng": lng, "speed": self.speed}


def format_leaderboard(rows: list[dict]) -> str:
    lines = ["Race Leaderboard", f"{'Pos':>3}  {'Name':<12} {'Dist_m':>7} {'Gap_s':>6} {'Speed':>6} {'Laps':>4} {'Best':>7}"]
    for row in rows:
        best = f"{row['bestLap']:.2f}" if row.get("bestLap") is not None else "--"
        lines.append(
            f"{row['rank']:>3}  {row['name']:<12} {row['dist']:>7} {row['gapSec']:>6.1f} "
            f"{row['speed']:>6.1f} {row['lapCount']:>4} {best:>7}"
        )
    return "\n".join(lines)


async def configure_start_line(session: ClientSession, server_url: str, race_id: str) -> None:
    payload = {"lat": START_LINE[0], "lng": START_LINE[1], "radiusMeters": START_RADIUS_METERS}
    async with session.put(f"{server_url}/api/races/{race_id}/start_line", json=payload) as resp:
        if resp.status == 409:
            logger.info("Start line already configured")
        elif resp.status != 200:
            logger.error(f"Failed to configure start line: {resp.status} {await resp.text()}")


async def print_leaderboard(ws: ClientWebSocketResponse) -> None:
    async for msg in ws:
        if msg.type != WSMsgType.TEXT:
            continue
        data = msg.json()
        if data.get("type") == "leaderboard":
            print("\033[2J\033[H" + format_leaderboard(data["rows"]), flush=True)
        elif data.get("type") == "lap":
            logger.info(f"{data['name']} completed lap {data['lapNumber']} in {data['lapTime']:.2f}s")
        elif data.get("type") == "error":
            logger.error(f"Server error: {data['message']}")


async def drain(ws: ClientWebSocketResponse) -> None:
    async for _ in ws:
        pass


async def run_simulation(server_url: str, race_id: str, cars: list[SimulatedCar], interval: float) -> None:
    async with ClientSession() as session:
        await configure_start_line(session, server_url, race_id)

        sockets = []
        for car in cars:
            ws = await session.ws_connect(f"{server_url}/ws")
            await ws.send_json({"type": "joinRace", "raceId": race_id, "name": car.name})
            sockets.append(ws)

        readers = [asyncio.create_task(print_leaderboard(sockets[0]))]
        readers.extend(asyncio.create_task(drain(ws)) for ws in sockets[1:])
        try:
            while True:
                for car, ws in zip(cars, sockets):
                    car.advance(interval)
                    await ws.send_json(car.telemetry())
                await asyncio.sleep(interval)
        finally:
            for task in readers:
                task.cancel()
            for ws in sockets:
                await ws.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Simulate cars racing on a RaceGap server.")
    parser.add_argument("--server", default=SERVER_URL, help="Server base URL")
    parser.add_argument("--race", default=RACE_ID, help="Race id to join")
    parser.add_argument("--interval", type=float, default=0.25, help="Seconds between fixes")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s:%(message)s")

    # Two cars side by side, one a little slower
    cars = [SimulatedCar("Car A", speed=25.0), SimulatedCar("Car B", speed=24.5)]
    try:
        asyncio.run(run_simulation(args.server, args.race, cars, args.interval))
    except ClientError as e:
        logger.error(f"Connection to {args.server} failed: {e}")
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
