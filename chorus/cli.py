"""Command-line entry point.

Usage:
    # Send a prompt to several chatbots, print the bundle as JSON
    python -m chorus --prompt "Explain TCP slow start" --chatbots chatgpt,claude

    # Also save the bundle
    python -m chorus --prompt "hi" --chatbots chatgpt --export markdown --output out.md

    # Pre-warm sessions for all enabled chatbots
    python -m chorus --setup-sessions

    # List configured chatbots
    python -m chorus --list-chatbots

Environment Variables:
    CHORUS_GLOBAL_TIMEOUT, CHORUS_CALL_TIMEOUT, CHORUS_SESSIONS_DIR,
    CHORUS_SESSION_SOURCE, CHORUS_TARGETS_FILE, CHORUS_LOG_LEVEL, CHORUS_LOG_JSON
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from ._logging import configure_logging, get_component_logger
from .export import FORMAT_EXTENSIONS, export_bundle
from .service import ChorusService
from .settings import ChorusSettings
from .types import MalformedRequest, PromptRequest, RegistryError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chorus",
        description="Send one prompt to several chatbots and aggregate the answers",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--prompt", help="Prompt text to send")
    mode.add_argument("--setup-sessions", action="store_true", help="Pre-warm chatbot sessions")
    mode.add_argument("--list-chatbots", action="store_true", help="List configured chatbots")
    parser.add_argument(
        "--chatbots",
        help="Comma-separated chatbot ids (default: all enabled chatbots)",
    )
    parser.add_argument("--export", choices=sorted(FORMAT_EXTENSIONS), help="Also save the bundle")
    parser.add_argument("--output", help="Export file path (default: derived from the prompt)")
    parser.add_argument("--global-timeout", type=float, help="Override CHORUS_GLOBAL_TIMEOUT")
    parser.add_argument("--targets-file", help="Override CHORUS_TARGETS_FILE")
    return parser


def _emit(payload: object) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


async def _handle_prompt(service: ChorusService, args: argparse.Namespace) -> None:
    if args.chatbots:
        chatbots: List[str] = [c for c in args.chatbots.split(",") if c.strip()]
    else:
        chatbots = [t.id for t in service.registry.list_targets()]

    bundle = await service.dispatch(PromptRequest.create(args.prompt, chatbots))
    if args.export:
        path = export_bundle(bundle, args.export, path=args.output)
        get_component_logger("cli").info("bundle_exported", path=str(path), format=args.export)
    _emit(bundle.to_dict())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = ChorusSettings.from_env()
    if args.global_timeout is not None:
        settings.global_timeout = args.global_timeout
    if args.targets_file:
        settings.targets_file = args.targets_file
    configure_logging(settings.log_level, settings.log_json)

    try:
        service = ChorusService.from_settings(settings)
    except RegistryError as exc:
        sys.stderr.write(f"Configuration error: {exc}\n")
        return 1

    if args.list_chatbots:
        _emit(service.list_chatbots())
        return 0

    if args.setup_sessions:
        report = asyncio.run(service.setup_sessions())
        _emit(report)
        if report["status"] == "error":
            sys.stderr.write("Setup error: no chatbot session could be established\n")
            return 1
        return 0

    try:
        asyncio.run(_handle_prompt(service, args))
    except (MalformedRequest, ValueError, OSError) as exc:
        sys.stderr.write(f"Prompt error: {exc}\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
