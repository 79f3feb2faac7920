"""Command-line entry point for the chat sync engine.

Usage:
    dronehub drones
    dronehub send my-drone "Fix the failing tests" --chat default
    dronehub watch my-drone --chat default
    dronehub watch my-drone --raw --view log
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dronehub.adapters.event_bus import EventBus
from dronehub.adapters.events import (
    PendingChanged,
    PromptStateChanged,
    SessionTextUpdated,
    TranscriptUpdated,
)
from dronehub.adapters.hub_client import HubClient

from .cache import ResponseCache
from .config import SyncConfig
from .errors import HubError
from .keys import conversation_key
from .models import AddressingMode, ChatSendPayload, DisplayMode, QueuedPromptState, RuntimeStatus
from .runtime import ChatRuntime
from .status_sort import sort_by_status
from .yaml_config import default_config_path, load_yaml_config

logger = logging.getLogger(__name__)

console = Console()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="dronehub",
        description="Send prompts to and follow conversations on Drone Hub drones",
    )
    parser.add_argument("--url", default=None, help="Hub base URL (default: from config)")
    parser.add_argument(
        "--config", default=None,
        help="Path to hub.yaml (default: ~/.dronehub/hub.yaml if present)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    drones_p = sub.add_parser("drones", help="List drones, idle ones first")
    drones_p.add_argument(
        "--no-sort", action="store_true", help="Keep hub order instead of status order",
    )

    send_p = sub.add_parser("send", help="Send one prompt (queued while provisioning)")
    send_p.add_argument("drone")
    send_p.add_argument("prompt")
    send_p.add_argument("--chat", default="default")
    send_p.add_argument(
        "--wait", type=float, default=300.0,
        help="Seconds to wait for a queued prompt to be delivered (default: 300)",
    )

    watch_p = sub.add_parser("watch", help="Follow a conversation")
    watch_p.add_argument("drone")
    watch_p.add_argument("--chat", default="default")
    watch_p.add_argument("--raw", action="store_true", help="Follow raw session output")
    watch_p.add_argument(
        "--view", choices=[m.value for m in AddressingMode], default=AddressingMode.LOG.value,
        help="Raw output addressing mode (default: log)",
    )

    args = parser.parse_args()

    config = _load_config(args.config)
    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    if args.url:
        config.base_url = args.url.rstrip("/")

    try:
        if args.command == "drones":
            code = asyncio.run(_cmd_drones(config, sort=not args.no_sort))
        elif args.command == "send":
            code = asyncio.run(_cmd_send(config, args.drone, args.chat, args.prompt, args.wait))
        else:
            code = asyncio.run(_cmd_watch(
                config, args.drone, args.chat,
                DisplayMode.RAW_LOG if args.raw else DisplayMode.STRUCTURED,
                AddressingMode(args.view),
            ))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        code = 130
    sys.exit(code)


def _load_config(path: str | None) -> SyncConfig:
    if path:
        return load_yaml_config(path)
    default = default_config_path()
    if default.is_file():
        return load_yaml_config(default)
    return SyncConfig.from_env()


def _make_client(config: SyncConfig) -> HubClient:
    cache = ResponseCache(config.cache_ttl_seconds) if config.cache_ttl_seconds > 0 else None
    return HubClient(
        config.base_url, timeout_seconds=config.request_timeout_seconds, cache=cache,
    )


async def _cmd_drones(config: SyncConfig, sort: bool) -> int:
    async with _make_client(config) as client:
        try:
            drones = await client.list_drones()
        except HubError as exc:
            console.print(f"[red]Error:[/red] {escape(str(exc))}")
            return 1

    runtime_by_id = {d.id: RuntimeStatus(waiting_for_agent=d.busy) for d in drones}
    ordered = sort_by_status(drones, runtime_by_id, enabled=sort)

    table = Table(title=f"Drones at {config.base_url}")
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Chats")
    table.add_column("Busy")
    for d in ordered:
        table.add_row(
            d.label,
            d.hub_phase or ("ok" if d.status_ok else "down"),
            ", ".join(d.chats) or "-",
            "yes" if d.busy else "",
        )
    console.print(table)
    return 0


async def _refresh_drones(runtime: ChatRuntime, client: HubClient) -> None:
    try:
        runtime.update_drones(await client.list_drones())
    except HubError as exc:
        logger.warning("Drone list refresh failed: %s", exc)


async def _cmd_send(
    config: SyncConfig, drone: str, chat: str, prompt: str, wait_seconds: float,
) -> int:
    async with _make_client(config) as client:
        runtime = ChatRuntime(client, config)
        await _refresh_drones(runtime, client)
        runtime.select(drone, chat)
        await runtime.start()
        try:
            ok = await runtime.send(ChatSendPayload(prompt=prompt))
            if not ok:
                console.print(f"[red]Error:[/red] {escape(runtime.prompt_error or '')}")
                return 1
            key = conversation_key(drone, chat)
            if not runtime.queued_for(key):
                console.print("[green]Sent.[/green]")
                return 0

            console.print(f"[yellow]{drone} is provisioning; prompt queued.[/yellow]")
            loop = asyncio.get_running_loop()
            deadline = loop.time() + wait_seconds
            while loop.time() < deadline:
                await asyncio.sleep(2.0)
                await _refresh_drones(runtime, client)
                await runtime.flush_loop.wait_idle()
                queued = runtime.queued_for(key)
                if not queued:
                    console.print("[green]Delivered.[/green]")
                    return 0
                if queued[0].state == QueuedPromptState.FAILED:
                    console.print(f"[red]Delivery failed:[/red] {escape(queued[0].error or '')}")
                    return 1
            console.print("[red]Timed out waiting for the drone to become ready.[/red]")
            return 1
        finally:
            await runtime.aclose()


async def _cmd_watch(
    config: SyncConfig,
    drone: str,
    chat: str,
    display_mode: DisplayMode,
    addressing_mode: AddressingMode,
) -> int:
    bus = EventBus()
    async with _make_client(config) as client:
        runtime = ChatRuntime(client, config, event_callback=bus.make_callback())
        await _refresh_drones(runtime, client)
        runtime.select(drone, chat, display_mode=display_mode, addressing_mode=addressing_mode)
        await runtime.start()

        async def refresh_forever() -> None:
            while True:
                await asyncio.sleep(5.0)
                await _refresh_drones(runtime, client)

        refresher = asyncio.create_task(refresh_forever())
        shown_turns = 0
        last_text = ""
        try:
            async for event in bus.consume():
                if isinstance(event, TranscriptUpdated):
                    items = runtime.transcripts or []
                    if event.error:
                        console.print(f"[red]transcript error:[/red] {escape(event.error)}")
                    for item in items[shown_turns:]:
                        console.rule(f"turn {item.turn} · {item.at}")
                        console.print(f"[bold]> {escape(item.prompt)}[/bold]")
                        if item.ok:
                            console.print(item.output, markup=False)
                        else:
                            console.print(f"[red]{escape(item.error or 'failed')}[/red]")
                    shown_turns = max(shown_turns, len(items))
                elif isinstance(event, SessionTextUpdated):
                    text = runtime.session_text
                    if text.startswith(last_text):
                        tail = text[len(last_text):]
                    else:
                        # buffer was replaced (screen view, front trim or reset)
                        console.rule(f"{drone}/{chat}")
                        tail = text
                    if tail:
                        console.out(tail, end="", highlight=False)
                    last_text = text
                elif isinstance(event, PendingChanged):
                    for p in runtime.visible_pending_prompts:
                        logger.debug("pending %s %s", p.id[:8], p.state.value)
                elif isinstance(event, PromptStateChanged) and event.error:
                    console.print(f"[red]prompt error:[/red] {escape(event.error)}")
        finally:
            refresher.cancel()
            bus.close()
            await runtime.aclose()
    return 0


if __name__ == "__main__":
    main()
