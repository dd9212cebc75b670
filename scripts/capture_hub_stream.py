"""Utility to capture a relay hub's viewer stream to a JSONL file."""

from __future__ import annotations

import argparse
import asyncio
import json
import pathlib
import sys
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import aiohttp


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


async def _capture_stream(args: argparse.Namespace) -> None:
    uri = f"{args.scheme}://{args.host}:{args.port}/ws"
    output_path = _resolve_output_path(args.output)

    print(f"Connecting to {uri}")
    print(f"Writing stream to {output_path}")

    session_timeout = aiohttp.ClientTimeout(total=None, sock_read=None, sock_connect=args.timeout)

    async with aiohttp.ClientSession(timeout=session_timeout) as session:
        async with session.ws_connect(uri, heartbeat=30.0) as websocket:
            with output_path.open("a", encoding="utf-8") as handle:
                async for message in websocket:
                    record = _handle_ws_message(message)
                    if record is not None:
                        handle.write(json.dumps(record, ensure_ascii=False) + "\n")
                        handle.flush()


def _handle_ws_message(message: aiohttp.WSMessage) -> Optional[Mapping[str, Any]]:
    if message.type == aiohttp.WSMsgType.TEXT:
        return _make_record(message.data)
    if message.type == aiohttp.WSMsgType.ERROR:
        print(f"Websocket error: {message.data}", file=sys.stderr)
    if message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
        print("Websocket closed by hub; stopping capture.")
    return None


def _resolve_output_path(output: Optional[str]) -> pathlib.Path:
    if output:
        path = pathlib.Path(output)
    else:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        path = pathlib.Path(f"gse-stream-{timestamp}.jsonl")
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _make_record(raw_message: str) -> Mapping[str, Any]:
    base: dict[str, Any] = {"captured_at": _utc_timestamp(), "raw": raw_message}
    try:
        base["payload"] = json.loads(raw_message)
    except json.JSONDecodeError:
        base["payload_parse_error"] = True
    return base


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="localhost", help="Relay hub host (default: localhost)")
    parser.add_argument("--port", type=int, default=8080, help="Relay hub port (default: 8080)")
    parser.add_argument(
        "--scheme",
        default="ws",
        choices=("ws", "wss"),
        help="Websocket scheme to use (ws or wss)",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Path to write the JSONL stream (defaults to ./gse-stream-<timestamp>.jsonl)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Socket connect timeout in seconds (default: 10)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv or sys.argv[1:])

    try:
        asyncio.run(_capture_stream(args))
    except KeyboardInterrupt:
        return 0
    except (aiohttp.ClientError, OSError) as exc:
        print(f"Capture failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
