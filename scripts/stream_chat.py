#!/usr/bin/env python3
"""Create a chat and stream one message through a running Parley backend.

Usage:
  python scripts/stream_chat.py --base-url http://127.0.0.1:8000 --user alice "Hello there"

Environment fallbacks:
  PARLEY_BASE_URL, PARLEY_USER_ID, PARLEY_CHAT_ID
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parley streaming smoke client")
    parser.add_argument("content", help="Message to send")
    parser.add_argument("--base-url", default=os.getenv("PARLEY_BASE_URL", "http://127.0.0.1:8000"))
    parser.add_argument("--user", default=os.getenv("PARLEY_USER_ID", "smoke-user"))
    parser.add_argument("--chat-id", default=os.getenv("PARLEY_CHAT_ID"))
    parser.add_argument("--model", default=None)
    parser.add_argument("--quiet", action="store_true")
    return parser.parse_args()


def exit_with(message: str, code: int = 1) -> None:
    print(message, file=sys.stderr)
    raise SystemExit(code)


def safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        return {}


def create_chat(client: httpx.Client) -> str:
    response = client.post("/chats", json={"title": "Smoke test"})
    if response.status_code != 200:
        exit_with(f"Chat creation failed: HTTP {response.status_code} {response.text}")
    return safe_json(response)["chat"]["id"]


def stream_message(client: httpx.Client, chat_id: str, content: str, model: str | None) -> dict[str, Any]:
    """Print deltas as they arrive and return the terminal event payload."""
    body: dict[str, Any] = {"content": content}
    if model:
        body["model"] = model

    with client.stream("POST", f"/chats/{chat_id}/messages:stream", json=body) as response:
        if response.status_code != 200:
            response.read()
            exit_with(f"Stream failed: HTTP {response.status_code} {response.text}")
        for line in response.iter_lines():
            if not line.startswith("data: "):
                continue
            payload = json.loads(line[len("data: "):])
            if payload["type"] == "delta":
                print(payload["text"], end="", flush=True)
            else:
                print()
                return payload
    exit_with("Stream ended without a terminal event")
    return {}


def main() -> None:
    args = parse_args()
    headers = {"X-User-ID": args.user}
    client = httpx.Client(base_url=args.base_url.rstrip("/"), timeout=120.0, headers=headers)

    try:
        chat_id = args.chat_id or create_chat(client)
        final = stream_message(client, chat_id, args.content, args.model)
    except httpx.HTTPError as exc:
        exit_with(f"Request failed: {exc}")
    finally:
        client.close()

    if final.get("type") == "error":
        exit_with(f"Run failed: {final.get('code')} {final.get('message')}")
    if not args.quiet:
        print(f"chat={chat_id} tokens in={final['inputTokens']} out={final['outputTokens']}")


if __name__ == "__main__":
    main()
