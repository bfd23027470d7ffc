"""CLI entry point for relayreq.

Builds a NIP-01 filter from flags (and optional filters piped on stdin) and
either prints it or sends it to the given relays, printing every event as
one JSON line.

Examples:
    ```bash
    relayreq -k 1 -l 15 wss://nostr.wine wss://nostr-pub.wellorder.net
    relayreq -k 0 -a 3bf0c63f... wss://nos.lol | jq '.content | fromjson | .name'
    echo '{"kinds": [1], "#t": ["test"]}' | relayreq -l 5 -k 4549 --tag t=spam nos.lol
    relayreq --paginate --paginate-interval 2s -l 500 -k 1 relay.damus.io
    ```
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any

from relayreq.core.exceptions import RelayReqError
from relayreq.core.logger import Logger, setup_logging
from relayreq.models.constants import DeliveryMode, ExitCode
from relayreq.services.configs import load_config
from relayreq.services.context import AuthContext
from relayreq.services.filters import FilterBuilder, FilterOverrides
from relayreq.services.req import Req
from relayreq.utils.keys import default_secret
from relayreq.utils.timeparse import parse_duration, parse_timestamp


logger = Logger("cli")


def _time_arg(value: str) -> int:
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _duration_arg(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"{value} must be non-negative")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="relayreq",
        description=(
            "Outputs a NIP-01 Nostr filter. When relays are given, connects to them, "
            "sends the filter and prints the matching events."
        ),
    )
    parser.add_argument("relays", nargs="*", metavar="relay", help="Relay addresses to query")

    attrs = parser.add_argument_group("filter attributes")
    attrs.add_argument(
        "-a", "--author", action="append", dest="authors", help="Author pubkey (hex or npub)"
    )
    attrs.add_argument("-i", "--id", action="append", dest="ids", help="Event id (hex or note)")
    attrs.add_argument(
        "-k", "--kind", action="append", dest="kinds", type=_non_negative_int, help="Event kind"
    )
    attrs.add_argument(
        "-t", "--tag", action="append", dest="tags", help="Tag filter as <letter>=<value>"
    )
    attrs.add_argument("-e", action="append", help="Shortcut for --tag e=<value>")
    attrs.add_argument("-p", action="append", help="Shortcut for --tag p=<value>")
    attrs.add_argument("-d", action="append", help="Shortcut for --tag d=<value>")
    attrs.add_argument("-s", "--since", type=_time_arg, help="Only events newer than this")
    attrs.add_argument("-u", "--until", type=_time_arg, help="Only events older than this")
    attrs.add_argument("-l", "--limit", type=_non_negative_int, help="Only up to this many events")
    attrs.add_argument("--search", help="NIP-50 search query")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--stream", action="store_true", help="Keep the subscription open after EOSE"
    )
    mode.add_argument(
        "--paginate", action="store_true", help="Repeat requests with a decreasing 'until'"
    )
    parser.add_argument("--paginate-interval", type=_duration_arg, help="Time between pages")
    parser.add_argument(
        "--paginate-global-limit",
        type=_non_negative_int,
        help="Stop paginating after this many events (default: --limit)",
    )
    parser.add_argument(
        "--bare", action="store_true", help="Print the filter without the REQ envelope"
    )

    auth = parser.add_argument_group("authentication")
    auth.add_argument("--auth", action="store_true", help="Answer NIP-42 auth-required refusals")
    auth.add_argument(
        "--force-pre-auth",
        "--fpa",
        action="store_true",
        help="Wait for and answer an AUTH challenge before sending REQ",
    )
    auth.add_argument(
        "--sec", help="Secret key (hex or nsec) for AUTH (default: $NOSTR_SECRET_KEY or key 1)"
    )
    auth.add_argument("--prompt-sec", action="store_true", help="Prompt for the secret key")
    auth.add_argument(
        "--connect", metavar="BUNKER_URL", help="Sign AUTH through a NIP-46 bunker:// URL"
    )
    auth.add_argument(
        "--connect-as", metavar="SECRET", help="Client key for the bunker (default: random)"
    )

    parser.add_argument("--config", type=Path, help="YAML file with default settings")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level (default: WARNING)",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")

    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate explicitly given flags into config overrides."""
    overrides: dict[str, Any] = {}
    if args.relays:
        overrides["relays"] = args.relays
    if args.stream:
        overrides["delivery_mode"] = DeliveryMode.STREAM
    elif args.paginate:
        overrides["delivery_mode"] = DeliveryMode.PAGINATE

    pagination: dict[str, Any] = {}
    if args.paginate_interval is not None:
        pagination["interval"] = args.paginate_interval
    if args.paginate_global_limit:
        pagination["global_limit"] = args.paginate_global_limit
    if pagination:
        overrides["pagination"] = pagination

    auth: dict[str, Any] = {}
    if args.auth:
        auth["enabled"] = True
    if args.force_pre_auth:
        auth["force_pre_auth"] = True
    if auth:
        overrides["auth"] = auth

    if args.bare:
        overrides["output"] = {"bare": True}
    return overrides


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, build the request, and run it."""
    args = parse_args(argv)
    setup_logging(args.log_level, json_output=args.log_json)

    try:
        config = load_config(args.config, build_overrides(args))
        overrides = FilterOverrides.from_flags(
            authors=args.authors,
            ids=args.ids,
            kinds=args.kinds,
            tags=args.tags,
            e=args.e,
            p=args.p,
            d=args.d,
            since=args.since,
            until=args.until,
            limit=args.limit,
            search=args.search,
        )
    except RelayReqError as e:
        logger.error("setup_failed", error=str(e))
        return ExitCode.FAILURE

    context = AuthContext(
        secret=args.sec or default_secret(),
        prompt_secret=args.prompt_sec,
        bunker_url=args.connect,
        connect_as=args.connect_as,
        timeout=config.auth.bunker_timeout,
    )
    req = Req(config, FilterBuilder(overrides), context, stdin=sys.stdin)

    task = asyncio.current_task()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        if task is not None:
            task.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        return await req.run()
    except RelayReqError as e:
        logger.error("req_failed", error=str(e))
        return ExitCode.FAILURE
    except asyncio.CancelledError:
        logger.info("interrupted")
        return ExitCode.INTERRUPTED
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(ExitCode.INTERRUPTED)


if __name__ == "__main__":
    cli()
