from __future__ import annotations

import argparse
import logging
import ssl
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import dotenv
import uvloop

from castlink.client import CastClient
from castlink.const import CAST_VERSION, CastEnv
from castlink.controllers.exceptions import NotRunningError
from castlink.controllers.media import MediaController
from castlink.controllers.receiver import resolve_app_id
from castlink.correlation import correlation_context
from castlink.logging_abstraction import configure_logging, get_logger
from castlink.metrics.registry import start_metrics_server
from castlink.models import ApplicationSession, ReceiverStatus, StreamType
from castlink.protocol.exceptions import CastError
from castlink.protocol.namespaces import NS_MEDIA
from castlink.transport.retry_policy import TimeoutConfig
from castlink.transport.socket_abstraction import insecure_ssl_context

logger = get_logger(__name__)

Command = Callable[[CastClient, argparse.Namespace], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="castlink", description="Control a cast receiver")
    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {CAST_VERSION}")
    _ = parser.add_argument("--host", required=True, help="Receiver host name or address")
    _ = parser.add_argument("--port", type=int, default=None, help="Receiver port (default: CAST_PORT or 8009)")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument(
        "--insecure",
        action="store_true",
        help="Accept the receiver's self-signed certificate without verification",
    )
    _ = parser.add_argument("--cafile", type=Path, default=None, help="CA bundle used to verify the receiver")

    commands = parser.add_subparsers(dest="command", required=True)

    _ = commands.add_parser("info", help="Show running applications and volume")

    launch = commands.add_parser("launch", help="Launch an application")
    _ = launch.add_argument("app", help="Application id or alias (default, backdrop, youtube)")

    stop = commands.add_parser("stop", help="Stop an application")
    target = stop.add_mutually_exclusive_group(required=True)
    _ = target.add_argument("app", nargs="?", help="Application id, alias, transport id or session id")
    _ = target.add_argument("--current", action="store_true", help="Stop the application in the foreground")

    media = commands.add_parser("media", help="Load media into the default media receiver")
    _ = media.add_argument("url")
    _ = media.add_argument("--content-type", default="video/mp4")
    _ = media.add_argument(
        "--stream-type",
        default=StreamType.BUFFERED.value,
        choices=[s.value for s in StreamType],
        type=str.upper,
    )
    _ = media.add_argument("--app", default="default", help="Application to load the media in")
    _ = media.add_argument("--no-autoplay", action="store_false", dest="autoplay")

    _ = commands.add_parser("pause", help="Pause current media")
    _ = commands.add_parser("play", help="Resume current media")

    seek = commands.add_parser("seek", help="Seek current media")
    _ = seek.add_argument("position", type=float, help="Position in seconds")

    volume = commands.add_parser("volume", help="Set the receiver volume")
    _ = volume.add_argument("level", type=float, help="Volume level in [0, 1]")

    _ = commands.add_parser("mute", help="Mute the receiver")
    _ = commands.add_parser("unmute", help="Unmute the receiver")
    return parser


def load_env_file(env_file: Path | None) -> CastEnv:
    """Load a .env file (if given) and return the settings it produces."""
    if env_file is not None:
        env_path = env_file.expanduser().resolve()
        if not env_path.exists():
            logger.error(
                "Environment file not found",
                extra={"path": str(env_path)},
            )
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info(
                "Environment variables loaded",
                extra={"source": str(env_path)},
            )
        else:
            logger.warning(
                "No environment variables loaded from file",
                extra={"path": str(env_path)},
            )
    return CastEnv.from_env()


def _ssl_context(args: argparse.Namespace) -> ssl.SSLContext:
    if args.insecure:
        return insecure_ssl_context()
    context = ssl.create_default_context(cafile=str(args.cafile) if args.cafile else None)
    # Receivers are addressed by IP; the certificate never names the host
    context.check_hostname = False
    return context


def _print_status(status: ReceiverStatus) -> None:
    volume = status.volume
    level = "?" if volume.level is None else f"{volume.level:.2f}"
    print(f"Volume: {level}{' (muted)' if volume.muted else ''}")
    if not status.applications:
        print("No applications running")
    for app in status.applications:
        idle = " [idle]" if app.is_idle else ""
        print(f"{app.app_id}  {app.display_name}{idle}")
        print(f"    transport={app.transport_id} session={app.session_id} {app.status_text}")


def _foreground_app(status: ReceiverStatus) -> ApplicationSession | None:
    return next((app for app in status.applications if not app.is_idle), None)


async def _media_controller(client: CastClient) -> MediaController:
    status = await client.get_status()
    app = next((a for a in status.applications if a.supports(NS_MEDIA)), None)
    if app is None:
        raise NotRunningError(NS_MEDIA)
    controller = client.media_controller(app)
    _ = await controller.get_status()
    return controller


async def cmd_info(client: CastClient, _args: argparse.Namespace) -> int:
    _print_status(await client.get_status())
    return 0


async def cmd_launch(client: CastClient, args: argparse.Namespace) -> int:
    session = await client.launch(args.app)
    print(f"Launched {session.display_name or session.app_id} (transport {session.transport_id})")
    return 0


async def cmd_stop(client: CastClient, args: argparse.Namespace) -> int:
    status = await client.get_status()
    if args.current:
        app = _foreground_app(status)
    else:
        app = status.find_app(resolve_app_id(args.app)) or status.find_session(args.app)
    if app is None:
        raise NotRunningError(args.app or "current")
    _ = await client.stop(app.transport_id)
    print(f"Stopped {app.display_name or app.app_id}")
    return 0


async def cmd_media(client: CastClient, args: argparse.Namespace) -> int:
    _ = await client.get_status()
    session = client.receiver.running_app(args.app) or await client.launch(args.app)
    controller = client.media_controller(session)
    media_session = await controller.load(
        args.url,
        content_type=args.content_type,
        stream_type=args.stream_type,
        autoplay=args.autoplay,
    )
    print(f"Media session {media_session.media_session_id}: {media_session.player_state}")
    return 0


async def cmd_pause(client: CastClient, _args: argparse.Namespace) -> int:
    _ = await (await _media_controller(client)).pause()
    return 0


async def cmd_play(client: CastClient, _args: argparse.Namespace) -> int:
    _ = await (await _media_controller(client)).play()
    return 0


async def cmd_seek(client: CastClient, args: argparse.Namespace) -> int:
    _ = await (await _media_controller(client)).seek(args.position)
    return 0


async def cmd_volume(client: CastClient, args: argparse.Namespace) -> int:
    _print_status(await client.set_volume(args.level))
    return 0


async def cmd_mute(client: CastClient, _args: argparse.Namespace) -> int:
    _ = await client.set_muted(True)
    return 0


async def cmd_unmute(client: CastClient, _args: argparse.Namespace) -> int:
    _ = await client.set_muted(False)
    return 0


COMMANDS: dict[str, Command] = {
    "info": cmd_info,
    "launch": cmd_launch,
    "stop": cmd_stop,
    "media": cmd_media,
    "pause": cmd_pause,
    "play": cmd_play,
    "seek": cmd_seek,
    "volume": cmd_volume,
    "mute": cmd_mute,
    "unmute": cmd_unmute,
}


async def run(args: argparse.Namespace, env: CastEnv) -> int:
    timeout_config = TimeoutConfig(
        status_timeout=env.status_timeout,
        command_timeout=env.command_timeout,
        launch_timeout=env.launch_timeout,
        connect_timeout=env.connect_timeout,
    )
    client = await CastClient.connect(
        args.host,
        args.port or env.port,
        ssl_context=_ssl_context(args),
        timeout_config=timeout_config,
        sender_id=env.sender_id,
        max_frame_size=env.max_frame_size,
        heartbeat_interval=env.heartbeat_interval,
        heartbeat_miss_threshold=env.heartbeat_miss_threshold,
        event_queue_size=env.event_queue_size,
    )
    async with client:
        return await COMMANDS[args.command](client, args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the castlink command."""
    args = build_parser().parse_args(argv)

    with correlation_context():
        env = load_env_file(args.env)
        level = logging.DEBUG if (args.debug or env.debug) else logging.INFO
        _ = configure_logging(
            log_format=env.log_format,
            json_file=env.log_json_file,
            human_output=env.log_human_output,
            level=level,
        )
        logger.debug("Starting castlink", extra={"version": CAST_VERSION, "command": args.command})

        if env.metrics_port:
            start_metrics_server(env.metrics_port)

        try:
            return uvloop.run(run(args, env))
        except CastError as e:
            logger.error("✗ %s", e, extra={"error_type": type(e).__name__})
            return 1
        except ValueError as e:
            logger.error("✗ %s", e)
            return 2
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down...")
            return 130


if __name__ == "__main__":
    sys.exit(main())
