#!/usr/bin/env python3
"""
HTTP endpoints for the Beacon Validator Monitor

- /metrics      local metric store only
- /all-metrics  local + system + filtered chain node metrics
- /health       always 200 OK
- /             index page
"""

import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from beacon_monitor.exporters.aggregator import MetricsAggregator
from beacon_monitor.monitor.metric_store import MetricStore


logger = logging.getLogger(__name__)


ALL_METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Beacon Validator Unified Metrics</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 40px; }}
        .container {{ max-width: 800px; margin: 0 auto; }}
        .metric {{ margin: 10px 0; padding: 10px; background: #f5f5f5; border-radius: 5px; }}
        a {{ color: #007bff; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Beacon Validator Unified Metrics</h1>
        <p>Validator signing metrics, system metrics and chain node metrics from a single port.</p>
        <div class="metric">
            <h3>Metrics Endpoints</h3>
            <p><a href="/metrics">/metrics</a> - Local validator metrics</p>
            <p><a href="/all-metrics">/all-metrics</a> - <strong>All metrics unified (recommended)</strong></p>
            <p><a href="/health">/health</a> - Service status check</p>
        </div>
        <div class="metric">
            <h3>Key Metrics</h3>
            <ul>
                <li><strong>{ns}_beacon_block_signed</strong> - Block signing status per validator</li>
                <li><strong>{ns}_block_height</strong> - Current block height</li>
                <li><strong>{ns}_consecutive_missed_blocks</strong> - Current miss streak</li>
                <li><strong>{ns}_status</strong> - Active set membership</li>
                <li><strong>{ns}_mempool_size</strong> - Mempool size</li>
            </ul>
        </div>
        <div class="metric">
            <h3>Beacon Chain Signing</h3>
            <p>Signing status of block N is read from block N-1's last commit.</p>
        </div>
    </div>
</body>
</html>
"""


async def metrics_handler(request):
    """Serve the local metric store in Prometheus exposition format"""
    store: MetricStore = request.app['metric_store']
    return web.Response(body=store.serialize(), headers={'Content-Type': CONTENT_TYPE_LATEST})


async def all_metrics_handler(request):
    """Serve the merged metrics of all three sources"""
    aggregator: MetricsAggregator = request.app['aggregator']
    body = await aggregator.render()
    return web.Response(body=body.encode('utf-8'), headers={'Content-Type': ALL_METRICS_CONTENT_TYPE})


async def health_check_handler(request):
    """Always OK, independent of upstream health"""
    return web.Response(text="OK", status=200, content_type='text/plain')


async def index_handler(request):
    store: MetricStore = request.app['metric_store']
    return web.Response(text=INDEX_HTML.format(ns=store.namespace), content_type='text/html')


def create_app(metric_store: MetricStore, aggregator: MetricsAggregator) -> web.Application:
    """
    Build the aiohttp application

    Args:
        metric_store: Local metric store (read-only from handlers)
        aggregator: Aggregator used by /all-metrics
    """
    app = web.Application()
    app['metric_store'] = metric_store
    app['aggregator'] = aggregator

    app.router.add_get('/metrics', metrics_handler)
    app.router.add_get('/all-metrics', all_metrics_handler)
    app.router.add_get('/health', health_check_handler)
    app.router.add_get('/', index_handler)
    return app


async def start_http_server(app: web.Application, host: str = '0.0.0.0', port: int = 8080):
    """
    Start the HTTP server

    Returns:
        web.AppRunner instance (call cleanup() on shutdown)
    """
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"✓ Metrics server started on http://{host}:{port} (/metrics, /all-metrics, /health)")
    return runner
