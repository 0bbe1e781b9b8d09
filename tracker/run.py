#!/usr/bin/env python3
"""
Headless entry point for the live flight tracker.

Connects to a feed hub, applies a fixed viewport and logs every frame.
"""

import argparse
import asyncio
import logging
import signal

from prometheus_client import start_http_server

from contracts.constants import FILTER_TYPES
from tracker.client import LiveFlightClient, Notice
from tracker.config import DEFAULT_FILTER, METRICS_PORT, TRACKER_WS_URL, SessionSettings
from tracker.view import ViewFrame
from tracker.viewport import Bounds

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_bbox(value: str) -> Bounds:
    try:
        south, west, north, east = (float(part) for part in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError("bbox must be 'south,west,north,east'")
    try:
        return Bounds(south=south, west=west, north=north, east=east)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="SkyTrack live flight tracker (headless)")
    ap.add_argument("--url", default=TRACKER_WS_URL, help="Feed hub websocket URL")
    ap.add_argument("--bbox", type=parse_bbox, default=Bounds(-90, -180, 90, 180),
                    help="Viewport as south,west,north,east")
    ap.add_argument("--zoom", type=int, default=4, help="Map zoom level")
    ap.add_argument("--filter", choices=FILTER_TYPES, default=DEFAULT_FILTER, help="Subscription filter")
    ap.add_argument("--metrics-port", type=int, default=METRICS_PORT,
                    help="Prometheus port (0 disables)")
    return ap.parse_args(argv)


def log_frame(frame: ViewFrame):
    logger.info(
        f"Frame {frame.sequence}: {len(frame.visible)} visible, "
        f"{len(frame.cluster_markers)} clusters, {len(frame.individual_markers)} markers "
        f"(detail={frame.detail_level.value if frame.detail_level else 'n/a'})"
    )


def log_notice(notice: Notice):
    log = logger.error if notice.level == "error" else logger.info
    log(f"[{notice.title}] {notice.message}")


async def run(args: argparse.Namespace):
    settings = SessionSettings(initial_filter=args.filter)
    client = LiveFlightClient(args.url, settings=settings)
    client.view.subscribe(log_frame)
    client.on_notice(log_notice)
    client.viewport.on_viewport_settled(args.bbox, args.zoom)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(client.close()))
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await client.run()


def main(argv=None):
    args = parse_args(argv)

    logger.info("=" * 50)
    logger.info("SkyTrack Tracker - Starting")
    logger.info(f"Hub: {args.url}  Filter: {args.filter}  Zoom: {args.zoom}")
    logger.info("=" * 50)

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info(f"Prometheus metrics available on :{args.metrics_port}")

    asyncio.run(run(args))
    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
