import argparse
import asyncio
import json
from pathlib import Path

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay PBX call webhooks against the feed.")
    parser.add_argument("--file", required=True, help="Path to a JSON file with a 'calls' list")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="API base URL")
    parser.add_argument("--secret", default="", help="PBX webhook secret (X-PBX-Secret)")
    parser.add_argument("--token", default="", help="API bearer token, needed with --follow")
    parser.add_argument(
        "--follow",
        action="store_true",
        help="Subscribe to the live stream and print frames while replaying",
    )
    parser.add_argument(
        "--speed",
        type=float,
        default=1.0,
        help="Replay speed multiplier (1.0=realtime, 2.0=2x faster)",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Disable pacing and post calls back to back",
    )
    return parser.parse_args()


def _delay_for_call(calls: list[dict], index: int, speed: float, no_wait: bool) -> float:
    if no_wait or index == 0:
        return 0.0
    current = calls[index].get("offset_ms")
    previous = calls[index - 1].get("offset_ms")
    if not isinstance(current, (int, float)) or not isinstance(previous, (int, float)):
        return 0.5 / speed
    return max(0.0, (current - previous) / 1000.0) / speed


async def follow_stream(client: httpx.AsyncClient, token: str, ready: asyncio.Event) -> None:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    async with client.stream("GET", "/incoming-calls/stream", headers=headers, timeout=None) as response:
        if response.status_code != 200:
            print(f"Stream refused: HTTP {response.status_code}")
            ready.set()
            return
        ready.set()
        event_id = None
        async for line in response.aiter_lines():
            if line.startswith("id: "):
                event_id = line[4:]
            elif line.startswith("data: "):
                call = json.loads(line[6:])
                print(
                    "Received call "
                    f"id={event_id} phone={call.get('phone')} status={call.get('status')}"
                )
            elif line.startswith(":"):
                print("Received keep-alive")


async def replay(
    calls_file: Path,
    base_url: str,
    secret: str,
    token: str,
    follow: bool,
    speed: float,
    no_wait: bool,
) -> None:
    if speed <= 0:
        raise ValueError("--speed must be > 0")

    data = json.loads(calls_file.read_text(encoding="utf-8"))
    calls = data.get("calls", [])
    headers = {"X-PBX-Secret": secret} if secret else {}

    async with httpx.AsyncClient(base_url=base_url) as client:
        follower = None
        if follow:
            ready = asyncio.Event()
            follower = asyncio.create_task(follow_stream(client, token, ready))
            await ready.wait()

        for index, call in enumerate(calls):
            delay = _delay_for_call(calls, index, speed, no_wait)
            if delay > 0:
                await asyncio.sleep(delay)
            payload = {k: v for k, v in call.items() if k != "offset_ms"}
            response = await client.post("/incoming-calls", json=payload, headers=headers)
            print(f"Posted call {index + 1}/{len(calls)}: HTTP {response.status_code}")

        if follower is not None:
            # Give late frames a moment before hanging up.
            await asyncio.sleep(1.0)
            follower.cancel()
            try:
                await follower
            except asyncio.CancelledError:
                pass


def main() -> None:
    args = parse_args()
    calls_file = Path(args.file)
    if not calls_file.exists():
        raise FileNotFoundError(f"Calls file not found: {calls_file}")
    asyncio.run(
        replay(
            calls_file,
            args.base_url,
            args.secret,
            args.token,
            args.follow,
            args.speed,
            args.no_wait,
        )
    )


if __name__ == "__main__":
    main()
