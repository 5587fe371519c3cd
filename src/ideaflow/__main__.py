import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from ideaflow.config import IdeaFlowConfig
from ideaflow.log_format import ColoredFormatter

ENV_FILE_PATH = Path.home() / ".config" / "ideaflow" / "env"

CLIENT_COMMANDS = ("start", "stop", "clear", "reset", "status")


def _load_env_file() -> None:
    if not ENV_FILE_PATH.exists():
        return
    with open(ENV_FILE_PATH) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            value = value.strip("'\"")
            if key not in os.environ:
                os.environ[key] = value


def _configure_logging(verbose: bool, log_file: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColoredFormatter(datefmt="%H:%M:%S"))
    handlers: list[logging.Handler] = [handler]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers)

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)
        logging.getLogger("httpx").setLevel(logging.INFO)
    logging.getLogger("google_genai").setLevel(logging.WARNING)


def main() -> None:
    _load_env_file()
    parser = argparse.ArgumentParser(description="Live microphone transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("listen", help="Record until Ctrl+C and print snippets (default)")
    subparsers.add_parser("daemon", help="Run behind the control socket")
    subparsers.add_parser("start", help="Start recording in the daemon")
    subparsers.add_parser("stop", help="Stop recording in the daemon")
    subparsers.add_parser("clear", help="Clear snippet history in the daemon")
    subparsers.add_parser("reset", help="Dismiss an error in the daemon")
    subparsers.add_parser("status", help="Query daemon status")

    args = parser.parse_args()

    config = IdeaFlowConfig()
    _configure_logging(args.verbose, config.log_file)

    if args.command in CLIENT_COMMANDS:
        asyncio.run(_run_client_command(args.command, config))
    elif args.command == "daemon":
        asyncio.run(_run_daemon(config))
    else:
        sys.exit(asyncio.run(_run_listen(config)))


async def _run_client_command(action: str, config: IdeaFlowConfig) -> None:
    from ideaflow.adapters.unix_control import UnixSocketControlClient

    client = UnixSocketControlClient(socket_path=config.socket_path)

    try:
        result = await client.send_command(action)
        print(f"{result}")
    except ConnectionRefusedError:
        print("IdeaFlow daemon is not running", file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError:
        print("IdeaFlow daemon is not running", file=sys.stderr)
        sys.exit(1)


def _install_shutdown_handler(shutdown_event: asyncio.Event) -> None:
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)


async def _run_listen(config: IdeaFlowConfig) -> int:
    from ideaflow.domain.state import SessionStatus
    from ideaflow.factory import create_controller
    from ideaflow.health import run_startup_checks, has_critical_failures

    if has_critical_failures(run_startup_checks(config)):
        logging.error("Critical health check failures, aborting startup")
        return 1

    controller = create_controller(config)
    shutdown_event = asyncio.Event()
    _install_shutdown_handler(shutdown_event)

    session = await controller.start()
    if session is None or session.task is None:
        return 1

    shutdown_task = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait({session.task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    shutdown_task.cancel()
    await controller.stop()

    for snippet in controller.history:
        print(f"[{snippet.timestamp:%H:%M}] {snippet.text}")

    if controller.status == SessionStatus.ERROR:
        logging.error("Session ended with error: %s", controller.last_error)
        return 1
    return 0


def _state_payload(controller) -> dict:
    state = controller.snapshot()
    payload = {
        "status": state.status.name.lower(),
        "is_recording": state.is_recording,
        "current_text": state.current_text,
        "loudness_level": round(state.loudness_level, 4),
        "history": [
            {"id": s.id, "text": s.text, "timestamp": s.timestamp.isoformat()}
            for s in state.history
        ],
    }
    if controller.last_error is not None:
        payload["error"] = str(controller.last_error)
    return payload


async def _run_daemon(config: IdeaFlowConfig) -> None:
    from ideaflow.adapters.unix_control import UnixSocketControlServer
    from ideaflow.factory import create_controller
    from ideaflow.health import run_startup_checks, has_critical_failures

    if has_critical_failures(run_startup_checks(config)):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(1)

    controller = create_controller(config)
    control = UnixSocketControlServer(socket_path=config.socket_path)

    shutdown_event = asyncio.Event()
    _install_shutdown_handler(shutdown_event)

    await control.start()

    async def control_loop() -> None:
        async for cmd in control.commands():
            if cmd.action == "start":
                await controller.start()
            elif cmd.action == "stop":
                await controller.stop()
            elif cmd.action == "clear":
                controller.clear_history()
            elif cmd.action == "reset":
                controller.reset()
            elif cmd.action != "status":
                cmd.respond({"status": "error", "action": cmd.action, "detail": "unknown action"})
                continue
            cmd.respond({"action": cmd.action, **_state_payload(controller)})

    control_task = asyncio.create_task(control_loop())

    try:
        await shutdown_event.wait()
    finally:
        control_task.cancel()
        try:
            await asyncio.wait_for(control_task, timeout=1.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        await controller.stop()
        await control.stop()


if __name__ == "__main__":
    main()
