# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""lapreplay CLI - operator console for lap-marked instant replays"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

# Force UTF-8 encoding for Windows
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8")
    sys.stderr.reconfigure(encoding="utf-8")

from lapreplay import __version__
from lapreplay.core.adapters import DryRunAdapter, RemoteMediaSyncAdapter
from lapreplay.core.base_adapter import select_adapters
from lapreplay.core.config import ReplayConfig, load_config
from lapreplay.core.exceptions import ConfigError, LapReplayError, PlaybackError
from lapreplay.core.logger import get_logger
from lapreplay.core.models import LapMarker, Replay, build_play_queue, format_timestamp
from lapreplay.core.player import PlaybackController
from lapreplay.core.recorder import RecordingController
from lapreplay.obs import ObsWebSocketClient, find_source, list_media_sources
from lapreplay.obs.client import RemoteControlClient
from lapreplay.obs.scenes import DEFAULT_SOURCE_KINDS

logger = logging.getLogger("lapreplay.cli")

RECORD_HELP = "t = toggle buffer, l = lap, s = save, <enter> = status, q = quit"


async def _connect(config: ReplayConfig) -> RemoteControlClient:
    client = ObsWebSocketClient(
        request_timeout=config.connection.request_timeout_seconds
    )
    await client.connect(config.connection.url, password=config.connection.password)
    return client


def _fail(message: str):
    click.echo(f"[-] Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML config file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], log_level: Optional[str]):
    """lapreplay - mark laps while OBS records, replay them on air.

    Core commands:
        lapreplay record   - Toggle the replay buffer, mark laps, save
        lapreplay play     - Play laps of a saved replay through a media source

    Connection settings come from ~/.lapreplay/config.yaml, ./.lapreplay.yaml,
    --config and LAPREPLAY_* environment variables.
    """
    try:
        config = load_config(config_file)
    except ConfigError as e:
        _fail(str(e))

    level = (log_level or config.observability.log_level).upper()
    get_logger(level=level)
    ctx.obj = config


# =============================================================================
# Mixer status
# =============================================================================


@cli.command()
@click.pass_obj
def status(config: ReplayConfig):
    """Show the replay buffer status."""

    async def _status():
        client = await _connect(config)
        recorder = RecordingController(client, config.recorder)
        try:
            await recorder.attach(connected=True)
            return recorder.status
        finally:
            recorder.dispose()
            await client.close()

    try:
        buffer_status = asyncio.run(_status())
    except LapReplayError as e:
        _fail(str(e))
    click.echo(buffer_status.value)


@cli.command()
@click.option(
    "--kind",
    "-k",
    "kinds",
    multiple=True,
    default=DEFAULT_SOURCE_KINDS,
    show_default=True,
    help="Input kinds that can play replays",
)
@click.option("--format", "-f", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_obj
def sources(config: ReplayConfig, kinds, fmt: str):
    """List media sources replays can be played through."""

    async def _sources():
        client = await _connect(config)
        try:
            return await list_media_sources(client, kinds)
        finally:
            await client.close()

    try:
        found = asyncio.run(_sources())
    except LapReplayError as e:
        _fail(str(e))

    if fmt == "json":
        click.echo(
            json.dumps(
                [
                    {
                        "scene_name": s.scene_name,
                        "item_name": s.item_name,
                        "scene_item_id": s.scene_item_id,
                    }
                    for s in found
                ],
                indent=2,
            )
        )
        return

    if not found:
        click.echo("No media sources found")
        return
    for source in found:
        click.echo(f"{source}  (id {source.scene_item_id})")


# =============================================================================
# Recording
# =============================================================================


async def handle_record_command(recorder: RecordingController, command: str) -> bool:
    """Apply one console command; False means quit"""
    if command == "q":
        return False

    if command == "t":
        await recorder.toggle_buffer()
    elif command == "l":
        lap = recorder.add_lap()
        if lap is None:
            click.echo(f"Not recording ({recorder.status.value})", err=True)
        else:
            click.echo(f"Lap {len(recorder.laps)}: {format_timestamp(lap.time_ms)}", err=True)
            _echo_remaining(recorder)
    elif command == "s":
        result = await recorder.save()
        if result.requested:
            click.echo(f"Saving {len(result.laps)} lap(s)...", err=True)
        if result.conflict:
            click.echo(
                f"Dropped {len(result.overwritten)} lap(s) of an unconfirmed save",
                err=True,
            )
    elif command == "":
        click.echo(f"Buffer: {recorder.status.value}, {len(recorder.laps)} lap(s)", err=True)
        _echo_remaining(recorder)
    else:
        click.echo(RECORD_HELP, err=True)
    return True


def _echo_remaining(recorder: RecordingController):
    remaining = recorder.remaining_ms()
    if remaining is not None:
        click.echo(f"Autosave in {format_timestamp(max(remaining, 0))}", err=True)


@cli.command()
@click.pass_obj
def record(config: ReplayConfig):
    """Interactive lap console.

    Each saved replay is printed to stdout as one JSON line, ready to be
    fed back to `lapreplay play`.

    Commands: t (toggle buffer), l (lap), s (save), q (quit)
    """

    def on_recorded(replay: Replay):
        click.echo(json.dumps(replay.to_dict()))

    def on_status(buffer_status):
        click.echo(f"[buffer] {buffer_status.value}", err=True)

    async def _record():
        client = await _connect(config)
        recorder = RecordingController(client, config.recorder, on_recorded=on_recorded)
        recorder.on_status(on_status)
        loop = asyncio.get_running_loop()
        try:
            await recorder.attach(connected=True)
            click.echo(RECORD_HELP, err=True)
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                try:
                    if not await handle_record_command(recorder, line.strip().lower()):
                        break
                except LapReplayError as e:
                    click.echo(f"[-] {e}", err=True)
            await client.events.drain()
        finally:
            recorder.dispose()
            await client.close()

    try:
        asyncio.run(_record())
    except LapReplayError as e:
        _fail(str(e))


# =============================================================================
# Playback
# =============================================================================


async def resolve_source(
    client: RemoteControlClient,
    config: ReplayConfig,
    scene: Optional[str],
    item: Optional[str],
):
    """Find the target media source from options, falling back to config"""
    configured = config.source
    scene = scene or (configured.scene_name if configured else None)
    item = item or (configured.item_name if configured else None)
    if not scene or not item:
        raise click.UsageError("--scene and --item are required (or set source in config)")

    if (
        configured is not None
        and configured.scene_name == scene
        and configured.item_name == item
        and configured.to_target() is not None
    ):
        return configured.to_target()

    source = await find_source(client, scene, item)
    if source is None:
        raise PlaybackError(f"Source '{item}' not found in scene '{scene}'")
    return source


@cli.command()
@click.argument("path")
@click.option("--lap", "-l", "laps", type=int, multiple=True, help="Lap time in ms (repeatable)")
@click.option("--duration", "-d", type=int, help="Look-back per lap in ms")
@click.option("--scene", "-s", help="Scene holding the media source")
@click.option("--item", "-i", help="Media source name")
@click.option("--dry-run", "-n", is_flag=True, help="Log the playback instead of driving the mixer")
@click.option("--preview", is_flag=True, help="Also drive a local preview adapter")
@click.option("--preview-only", is_flag=True, help="Drive only the preview adapter")
@click.option("--rate", type=float, default=1.0, show_default=True, help="Countdown speed")
@click.pass_obj
def play(
    config: ReplayConfig,
    path: str,
    laps,
    duration: Optional[int],
    scene: Optional[str],
    item: Optional[str],
    dry_run: bool,
    preview: bool,
    preview_only: bool,
    rate: float,
):
    """Play laps of a saved replay.

    PATH is the replay file as seen by the mixer host.

    Examples:
        lapreplay play /replays/r1.mkv -l 65000 -l 92000 -s Replay -i "Replay VLC"
        lapreplay play /replays/r1.mkv -l 65000 --dry-run --rate 10
    """
    if not laps:
        raise click.UsageError("at least one --lap is required")
    if rate <= 0:
        raise click.UsageError("--rate must be positive")

    duration_ms = duration if duration is not None else config.recorder.lap_duration_ms
    replay = Replay(path=path, laps=[LapMarker(time_ms=t, duration_ms=duration_ms) for t in laps])
    try:
        queue = build_play_queue(replay)
    except ValueError as e:
        _fail(str(e))

    def on_state(state):
        click.echo(f"[replay] {state}")

    async def _play():
        client = None
        program = None
        preview_adapter = DryRunAdapter("preview") if (preview or preview_only) else None

        if dry_run:
            program = DryRunAdapter("program")
        elif not preview_only:
            client = await _connect(config)
            source = await resolve_source(client, config, scene, item)
            program = RemoteMediaSyncAdapter(client, source, config.transition, config.sync)

        adapters = select_adapters(program, preview_adapter, preview_mode=preview_only)
        controller = PlaybackController(queue, adapters, rate=rate)
        controller.on_status(on_state)
        try:
            if not await controller.check_configuration():
                raise PlaybackError("A playback target is not ready")
            await controller.prepare()
            if not await controller.start():
                raise PlaybackError("Playback did not start")
            await controller.wait_until_finished()
        finally:
            controller.dispose()
            if client is not None:
                await client.close()

    try:
        asyncio.run(_play())
    except LapReplayError as e:
        _fail(str(e))
    click.echo("Replay finished")


if __name__ == "__main__":
    cli()
