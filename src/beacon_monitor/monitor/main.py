#!/usr/bin/env python3
"""
Beacon Validator Monitor - Main

Polls a CometBFT RPC endpoint for beacon block signing status of tracked
validators and serves the unified metrics endpoint for Prometheus/VictoriaMetrics.
"""

import asyncio
import logging
import os
import signal
import sys

from beacon_monitor.clients.rpc_client import CometRPCClient
from beacon_monitor.exporters.aggregator import MetricsAggregator
from beacon_monitor.exporters.http_server import create_app, start_http_server
from beacon_monitor.monitor.block_tracker import BlockTracker
from beacon_monitor.monitor.config import MonitorConfig, load_env_file
from beacon_monitor.monitor.metric_store import MetricStore


logger = logging.getLogger(__name__)


def configure_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)


def install_signal_handlers(shutdown_event: asyncio.Event):
    """Set shutdown_event on SIGINT/SIGTERM"""
    loop = asyncio.get_running_loop()

    def _handle(signum):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle, signum)
        except NotImplementedError:
            # Windows event loops
            signal.signal(signum, lambda s, f: loop.call_soon_threadsafe(_handle, s))


async def run_monitor(config: MonitorConfig, shutdown_event: asyncio.Event) -> int:
    """
    Run the tracker and HTTP server until shutdown

    Args:
        config: Monitor configuration
        shutdown_event: Event that stops the monitor when set

    Returns:
        Process exit code
    """
    metric_store = MetricStore(namespace=config.metric_namespace, chain_id=config.chain_id)

    rpc_client = CometRPCClient(
        rpc_url=config.rpc_endpoint,
        api_url=config.api_endpoint,
        timeout=config.rpc_timeout,
        metric_store=metric_store
    )
    aggregator = MetricsAggregator(
        metric_store,
        node_exporter_url=config.node_exporter_url,
        chain_node_metrics_url=config.chain_node_metrics_url,
        excluded_prefixes=config.excluded_prefixes,
        system_timeout=config.system_feed_timeout,
        chain_timeout=config.chain_feed_timeout
    )
    tracker = BlockTracker(
        rpc_client,
        metric_store,
        config.validators,
        poll_interval=config.poll_interval
    )

    if not config.validators:
        logger.warning("TRACKED_VALIDATORS is empty - signing metrics will not be collected")

    runner = None
    tracker_task = None

    try:
        await rpc_client.start()
        await aggregator.start()

        # Only a bind failure here is fatal
        try:
            runner = await start_http_server(create_app(metric_store, aggregator), config.host, config.port)
        except OSError as e:
            logger.error(f"Failed to start HTTP server on {config.host}:{config.port}: {e}")
            return 1

        tracker_task = asyncio.create_task(tracker.run(shutdown_event))

        logger.info("=" * 70)
        logger.info("Beacon validator monitoring started")
        logger.info("=" * 70)

        await shutdown_event.wait()

    finally:
        logger.info("Shutting down gracefully...")

        if tracker_task is not None:
            shutdown_event.set()
            try:
                await asyncio.wait_for(tracker_task, timeout=config.rpc_timeout + 5)
            except asyncio.TimeoutError:
                logger.warning("Block tracker did not stop in time, cancelling")
                tracker_task.cancel()
                try:
                    await tracker_task
                except asyncio.CancelledError:
                    pass

        if runner is not None:
            try:
                logger.info("Stopping metrics server...")
                await runner.cleanup()
            except Exception as e:
                logger.error(f"Error stopping metrics server: {e}")

        await aggregator.close()
        await rpc_client.close()

        logger.info("✓ Shutdown complete")

    return 0


async def main(config: MonitorConfig) -> int:
    """Main entry point"""
    logger.info("=" * 70)
    logger.info("Beacon Validator Monitor - Unified Metrics Exporter")
    logger.info("=" * 70)
    logger.info(f"Configuration:\n{config}")
    logger.info("=" * 70)

    shutdown_event = asyncio.Event()
    install_signal_handlers(shutdown_event)

    return await run_monitor(config, shutdown_event)


def run():
    """Console script entry point"""
    env_path = load_env_file()
    configure_logging(os.getenv('LOG_LEVEL', 'INFO'))
    if env_path is not None:
        logger.info(f"Loaded environment from {env_path}")

    # Bad configuration exits before the event loop starts
    try:
        config = MonitorConfig()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(main(config)))
    except KeyboardInterrupt:
        logger.info("Exiting")
        sys.exit(0)


if __name__ == "__main__":
    run()
