"""tardis-stream CLI entrypoint.

Subcommands: replay (historical), live (real-time).

Prints one JSON object per normalized message to stdout. Errors and
diagnostics go to the log on stderr. The server URL defaults to the
TARDIS_MACHINE_WS_URL environment variable.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import IO, Any, Optional, Sequence, Union

import orjson

from tardis_stream.adapters.env_provider import EnvSettingsProvider, MissingSettingError
from tardis_stream.machine.client import Client
from tardis_stream.machine.config import ErrorPolicy, LiveOptions, RequestOptions, SessionConfig
from tardis_stream.machine.errors import ConnectError, ProtocolError, StreamError
from tardis_stream.machine.session import StreamItem, StreamSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STREAM_FAILED = 1
EXIT_USAGE = 2


def _csv(value: str) -> list[str]:
    items = [part.strip() for part in value.split(",") if part.strip()]
    if not items:
        raise argparse.ArgumentTypeError("expected a comma-separated list")
    return items


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="tardis-stream")
    sub = p.add_subparsers(dest="command", required=True)

    def add_common(sp: argparse.ArgumentParser) -> None:
        """Add arguments shared across all subcommands."""
        sp.add_argument("--url", help="Server WebSocket URL (default: $TARDIS_MACHINE_WS_URL)")
        sp.add_argument("--exchange", required=True, help="Exchange id, e.g. bybit")
        sp.add_argument("--symbols", type=_csv, default=None, help="Comma-separated symbols")
        sp.add_argument(
            "--data-types",
            dest="data_types",
            type=_csv,
            required=True,
            help="Comma-separated data types, e.g. trade,book_change",
        )
        sp.add_argument(
            "--with-disconnect-messages",
            dest="with_disconnect_messages",
            action="store_true",
            help="Ask the server for disconnect markers",
        )
        sp.add_argument(
            "--error-policy",
            dest="error_policy",
            choices=[policy.value for policy in ErrorPolicy],
            default=ErrorPolicy.YIELD.value,
            help="What to do with undecodable frames",
        )
        sp.add_argument("--connect-timeout", dest="connect_timeout", type=float, default=30.0)
        sp.add_argument("--log-level", dest="log_level", default="INFO")

    # replay
    rp = sub.add_parser("replay", help="Replay historical normalized data")
    add_common(rp)
    rp.add_argument("--from", dest="from_date", required=True, help="Start date, YYYY-MM-DD")
    rp.add_argument("--to", dest="to_date", required=True, help="End date, YYYY-MM-DD")

    # live
    lv = sub.add_parser("live", help="Stream live normalized data")
    add_common(lv)
    lv.add_argument("--timeout-interval-ms", dest="timeout_interval_ms", type=int, default=None)
    lv.add_argument(
        "--reconnect",
        action="store_true",
        help="Re-open the stream after it ends with an error",
    )
    lv.add_argument("--reconnect-delay", dest="reconnect_delay", type=float, default=1.0)
    lv.add_argument(
        "--max-reconnects",
        dest="max_reconnects",
        type=int,
        default=None,
        help="Give up after this many reconnects (default: never)",
    )
    return p


def build_options(args: argparse.Namespace) -> Union[RequestOptions, LiveOptions]:
    """Turn parsed arguments into request options. Raises InvalidRequestError."""
    with_disconnect = True if args.with_disconnect_messages else None
    if args.command == "replay":
        return RequestOptions(
            exchange=args.exchange,
            symbols=args.symbols,
            from_date=args.from_date,
            to_date=args.to_date,
            data_types=args.data_types,
            with_disconnect_messages=with_disconnect,
        )
    return LiveOptions(
        exchange=args.exchange,
        symbols=args.symbols,
        data_types=args.data_types,
        with_disconnect_messages=with_disconnect,
        timeout_interval_ms=args.timeout_interval_ms,
    )


def to_record(item: Any) -> dict[str, Any]:
    """JSON-ready view of a normalized message, tagged with its class name."""
    record = {"kind": type(item).__name__}
    record.update(dataclasses.asdict(item))
    return record


def _emit(item: StreamItem, out: IO[str]) -> None:
    if isinstance(item, StreamError):
        log = logger.error if item.fatal else logger.warning
        log(f"{type(item).__name__}: {item}")
        return
    out.write(orjson.dumps(to_record(item)).decode("utf-8"))
    out.write("\n")


async def _drain(session: StreamSession, out: IO[str]) -> Optional[StreamError]:
    """Print every item of a session. Returns the fatal error that ended it."""
    try:
        async with session:
            async for item in session:
                _emit(item, out)
    except StreamError as e:
        # ErrorPolicy.RAISE
        logger.error(f"{type(e).__name__}: {e}")
        return e
    return session.error


async def run_replay(client: Client, options: RequestOptions, out: IO[str]) -> int:
    try:
        session = await client.replay_normalized([options])
    except (ConnectError, ProtocolError) as e:
        logger.error(f"Could not start replay: {e}")
        return EXIT_STREAM_FAILED

    error = await _drain(session, out)
    return EXIT_STREAM_FAILED if error is not None else EXIT_OK


async def run_live(
    client: Client,
    options: LiveOptions,
    out: IO[str],
    *,
    reconnect: bool = False,
    reconnect_delay: float = 1.0,
    max_reconnects: Optional[int] = None,
) -> int:
    """
    Stream live data. With ``reconnect`` a stream that ends with an error
    (or fails to open) is re-opened after ``reconnect_delay`` seconds.
    Messages published while disconnected are lost.
    """
    attempts = 0
    while True:
        try:
            session = await client.stream_normalized([options])
            error: Optional[StreamError] = await _drain(session, out)
        except (ConnectError, ProtocolError) as e:
            error = e

        if error is None:
            return EXIT_OK
        if not reconnect or (max_reconnects is not None and attempts >= max_reconnects):
            return EXIT_STREAM_FAILED

        attempts += 1
        logger.warning(f"Live stream interrupted ({error}); reconnecting in {reconnect_delay}s (attempt {attempts})")
        await asyncio.sleep(reconnect_delay)


async def run(args: argparse.Namespace, client: Client, out: IO[str]) -> int:
    options = build_options(args)
    if isinstance(options, RequestOptions):
        return await run_replay(client, options, out)
    return await run_live(
        client,
        options,
        out,
        reconnect=args.reconnect,
        reconnect_delay=args.reconnect_delay,
        max_reconnects=args.max_reconnects,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint wrapper compatible with setuptools scripts."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        url = args.url or EnvSettingsProvider().get("machine_ws_url")
        config = SessionConfig(
            connect_timeout_s=args.connect_timeout,
            error_policy=ErrorPolicy(args.error_policy),
        )
        client = Client(url, config=config)
        return asyncio.run(run(args, client, sys.stdout))
    except MissingSettingError as e:
        print(f"{e}; pass --url or set the environment variable", file=sys.stderr)
        return EXIT_USAGE
    except StreamError as e:
        # InvalidRequestError / ConfigurationError: nothing was sent
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
