# check_relay.py
import os, sys, json, asyncio
import httpx

from toolrelay.client import RelayClient, RelayError
from toolrelay.wire.events import ContentEvent, ErrorEvent, StatusEvent, ToolCallEvent, ToolProgressEvent, ToolResultEvent

HOST = os.getenv("RELAY_HOST", "http://127.0.0.1:8000")
MODEL = os.getenv("RELAY_MODEL")  # empty -> server default model

def pretty(obj): return json.dumps(obj, ensure_ascii=False, indent=2)

async def show_config():
    async with httpx.AsyncClient(base_url=HOST, timeout=10) as http:
        r = await http.get("/config")
        r.raise_for_status()
        print("== /config ==")
        print(pretty(r.json()))

async def chat_stream(client: RelayClient, prompt: str):
    print("\n== stream chat ==")
    chars = 0
    async for event in client.stream_chat([{"role": "user", "content": prompt}], model=MODEL):
        if isinstance(event, ContentEvent):
            chars += len(event.content)
            sys.stdout.write(event.content)
            sys.stdout.flush()
        elif isinstance(event, StatusEvent):
            print(f"[status] {event.routing_decision} urls={event.url_count}")
        elif isinstance(event, ToolCallEvent):
            print(f"\n[tool_call] {event.tool_name} {pretty(event.args)}")
        elif isinstance(event, ToolProgressEvent):
            print(f"[progress] {event.tool_name}: {event.status} {event.message}")
        elif isinstance(event, ToolResultEvent):
            print(f"[tool_result] {event.tool_name}: {len(event.result)} chars")
        elif isinstance(event, ErrorEvent):
            print(f"\n[error] {event.message}")
    print("\n-- end of stream --")
    print("stream id:", client.last_stream_id)
    print("collected chars:", chars)

async def main():
    client = RelayClient(HOST, timeout=None)
    prompt = " ".join(sys.argv[1:]) or "Say hello in one sentence."
    await show_config()
    try:
        await chat_stream(client, prompt)
    except RelayError as e:
        print("relay error:", e)
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main())
