"""Entry point for the minute velocity recorder.

Three modes share one engine, one CSV sink and one readout:

- ``recorder price``: poll an exchange once per minute, forever.
- ``recorder relay``: stream a BrainFlow board, serve the newest channel
  values over HTTP and log per-minute channel means.
- ``recorder batch MINUTES [OUTPUT_CSV]``: stream a BrainFlow board for a
  fixed number of minutes, log per-minute means, then print a preview.

When the readout server is enabled the controller and uvicorn share one
asyncio event loop; the FastAPI lifespan starts the controller task and
stops it on shutdown. Without the server, SIGINT/SIGTERM stop the
controller directly.

Fatal errors (DeviceSessionError, PersistenceError) end the run with the
exit status carried by the exception.
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from recorder.cadence.aggregator import AggregateController
from recorder.cadence.base import CadenceController
from recorder.cadence.poller import PollController
from recorder.config import AppSettings
from recorder.console import format_preview
from recorder.exceptions import RecorderError
from recorder.logging import get_logger, setup_logging
from recorder.readout.cell import LiveReadout
from recorder.sources.device import BrainFlowBoard
from recorder.sources.price import CcxtPriceSource
from recorder.storage.csv_sink import CsvRecordSink
from recorder.velocity.engine import DeltaEngine

logger = get_logger("recorder.main")


def _setup_signal_handlers(controller: CadenceController) -> None:
    """Route SIGINT/SIGTERM to a cooperative controller stop.

    Must be called after the asyncio event loop is running.
    """
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        controller.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


def _on_controller_done(app: FastAPI, task: asyncio.Task) -> None:  # type: ignore[type-arg]
    """Take the server down with the controller if the controller failed."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        logger.info("controller_finished", note="readout server keeps serving")
        return
    logger.error("controller_failed", error=str(exc))
    server = getattr(app.state, "server", None)
    if server is not None:
        server.should_exit = True


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the controller as a background task for the lifetime of the server."""
    controller: CadenceController = app.state.controller
    task = asyncio.create_task(app.state.run_controller())
    task.add_done_callback(lambda t: _on_controller_done(app, t))
    app.state.controller_task = task
    logger.info("lifespan_started", mode=app.state.mode)

    yield

    controller.stop()
    await asyncio.wait([task])
    logger.info("lifespan_stopped", mode=app.state.mode)


async def _serve(
    settings: AppSettings,
    mode: str,
    controller: CadenceController,
    readout: LiveReadout,
    run_controller: Callable[[], Awaitable[None]],
) -> None:
    """Run the controller, embedded in the readout server when enabled."""
    if not settings.readout.enabled:
        _setup_signal_handlers(controller)
        logger.info("starting_without_readout", mode=mode)
        await run_controller()
        return

    from recorder.readout.app import create_readout_app

    app = create_readout_app(lifespan=lifespan)
    app.state.mode = mode
    app.state.readout = readout
    app.state.controller = controller
    app.state.run_controller = run_controller

    config = uvicorn.Config(
        app,
        host=settings.readout.host,
        port=settings.readout.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    app.state.server = server

    logger.info(
        "starting_with_readout",
        mode=mode,
        host=settings.readout.host,
        port=settings.readout.port,
    )
    await server.serve()

    task = getattr(app.state, "controller_task", None)
    if task is not None and task.done() and not task.cancelled() and task.exception():
        raise task.exception()


async def run_price(settings: AppSettings, output: str | None = None) -> None:
    """Live price poller: one record per minute until stopped."""
    structlog.contextvars.bind_contextvars(mode="price")
    sink = CsvRecordSink(output or settings.storage.price_csv)
    sink.open()

    readout = LiveReadout()
    controller = PollController(
        source=CcxtPriceSource(settings.price),
        engine=DeltaEngine(history_limit=settings.storage.history_limit),
        sink=sink,
        readout=readout,
        backoff_seconds=settings.price.backoff_seconds,
        unit="$",
    )
    logger.info(
        "price_poller_started",
        exchange=settings.price.exchange_id,
        symbol=settings.price.symbol,
        csv=str(sink.path),
    )
    await _serve(settings, "price", controller, readout, controller.run)


async def run_relay(settings: AppSettings, output: str | None = None) -> None:
    """EEG relay: newest channel values over HTTP plus per-minute means on disk."""
    structlog.contextvars.bind_contextvars(mode="relay")
    sink = CsvRecordSink(output or settings.storage.relay_csv)
    sink.open()

    readout = LiveReadout()
    agg = settings.aggregation
    controller = AggregateController(
        device=BrainFlowBoard(settings.device),
        engine=DeltaEngine(history_limit=settings.storage.history_limit),
        sink=sink,
        readout=readout,
        window_seconds=agg.window_seconds,
        read_interval=agg.relay_read_interval,
        samples_per_read=agg.relay_samples_per_read,
        empty_window_policy=agg.empty_window_policy,
    )
    await _serve(settings, "relay", controller, readout, controller.run)


async def run_batch(settings: AppSettings, minutes: int, output: str | None = None) -> None:
    """EEG batch summarizer: stream for ``minutes`` then print a preview."""
    structlog.contextvars.bind_contextvars(mode="batch")
    sink = CsvRecordSink(output or settings.storage.batch_csv)
    sink.open()

    agg = settings.aggregation
    engine = DeltaEngine(history_limit=max(settings.storage.history_limit, minutes + 1))
    controller = AggregateController(
        device=BrainFlowBoard(settings.device),
        engine=engine,
        sink=sink,
        window_seconds=agg.window_seconds,
        read_interval=agg.batch_read_interval,
        samples_per_read=agg.batch_samples_per_read,
        empty_window_policy=agg.empty_window_policy,
        echo=False,
    )
    _setup_signal_handlers(controller)
    await controller.run(duration_minutes=minutes)

    records = engine.history
    if len(records) < 2:
        logger.warning(
            "insufficient_records",
            records=len(records),
            note="At least 2 minutes are needed for change metrics",
        )
    print(f"CSV generated: {sink.path} ({len(records)} minutes)")
    if records:
        print()
        print(format_preview(records))


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise argparse.ArgumentTypeError("must be a positive number of minutes")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recorder",
        description="Record per-minute value, delta and velocity to an append-only CSV.",
    )
    sub = parser.add_subparsers(dest="mode", required=True)

    price = sub.add_parser("price", help="poll an exchange price once per minute")
    price.add_argument("--output", help="CSV path (default: STORAGE_PRICE_CSV)")
    price.add_argument("--no-readout", action="store_true", help="do not start the HTTP readout")

    relay = sub.add_parser("relay", help="relay EEG samples over HTTP and log minute means")
    relay.add_argument("--output", help="CSV path (default: STORAGE_RELAY_CSV)")
    relay.add_argument("--board", help="BrainFlow BoardIds name (default: DEVICE_BOARD)")

    batch = sub.add_parser("batch", help="average EEG samples per minute for a fixed duration")
    batch.add_argument("minutes", type=_positive_int, help="minutes to stream")
    batch.add_argument("output", nargs="?", help="CSV path (default: STORAGE_BATCH_CSV)")
    batch.add_argument("--board", help="BrainFlow BoardIds name (default: DEVICE_BOARD)")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)

    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)

    if getattr(args, "board", None):
        settings.device.board = args.board
    if getattr(args, "no_readout", False):
        settings.readout.enabled = False

    try:
        if args.mode == "price":
            asyncio.run(run_price(settings, args.output))
        elif args.mode == "relay":
            asyncio.run(run_relay(settings, args.output))
        else:
            asyncio.run(run_batch(settings, args.minutes, args.output))
    except RecorderError as exc:
        logger.critical(
            "recorder_fatal_error",
            error_type=type(exc).__name__,
            error=str(exc),
            exit_code=exc.exit_code,
        )
        print(f"recorder: fatal: {exc}", file=sys.stderr)
        return exc.exit_code or 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
