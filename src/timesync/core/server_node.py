import os
import logging
import argparse
import asyncio
from aiohttp import web

from timesync.core.master import Master, MasterConfig, DEFAULT_PORT
from timesync.core.notify import NotifyChannelClosed
from timesync.core.slave import Slave, SlaveConfig
from timesync.core.transport import parse_address
from timesync.time.api import (
    time_handler,
    clock_status_handler,
    time_stats_handler,
    reset_stats_handler,
    master_status_handler,
)
from timesync.time.monitor import SyncMonitor

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "TIMESYNC_LOG"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(level=None):
    level = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format=LOG_FORMAT)


def make_master_app(master: Master, node_id: str = "master"):
    """
    Build the status app of a master and run its loops as background tasks.
    """
    app = web.Application()
    app['master'] = master
    app['node_id'] = node_id
    app['background_tasks'] = []
    app.add_routes([
        web.get('/status', master_status_handler),
    ])
    app.on_startup.append(start_master)
    app.on_cleanup.append(on_cleanup)
    return app


def make_slave_app(slave: Slave, channel, monitor: SyncMonitor, node_id: str = "slave"):
    """
    Build the status app of a slave; the monitor is the channel's consumer.
    """
    app = web.Application()
    app['slave'] = slave
    app['channel'] = channel
    app['monitor'] = monitor
    app['node_id'] = node_id
    app['background_tasks'] = []
    app.add_routes([
        web.get('/time', time_handler),
        web.get('/clock', clock_status_handler),
        web.get('/status', clock_status_handler),
        web.get('/time/stats', time_stats_handler),
        web.post('/time/reset', reset_stats_handler),
    ])
    app.on_startup.append(start_slave)
    app.on_cleanup.append(on_cleanup)
    return app


def _log_task_exit(task: asyncio.Task):
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, NotifyChannelClosed):
        logger.error("Slave stopped: notification consumer went away")
    elif exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc!r}")


async def start_master(app):
    master = app['master']
    task = asyncio.create_task(master.serve(), name="master")
    task.add_done_callback(_log_task_exit)
    app['background_tasks'].append(task)


async def start_slave(app):
    slave = app['slave']
    channel = app['channel']
    monitor = app['monitor']

    monitor_task = asyncio.create_task(monitor.run(channel), name="monitor")
    slave_task = asyncio.create_task(slave.serve(), name="slave")
    for task in (monitor_task, slave_task):
        task.add_done_callback(_log_task_exit)
    app['background_tasks'].extend([monitor_task, slave_task])


async def on_cleanup(app):
    tasks = app.get('background_tasks', [])
    channel = app.get('channel')
    if channel is not None:
        channel.close()
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    for key in ('master', 'slave'):
        node = app.get(key)
        if node is not None:
            node.close()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="timesync",
                                     description="Broadcast UDP clock synchronization")
    parser.add_argument("--status-host", default="127.0.0.1")
    parser.add_argument("--status-port", type=int, default=8100,
                        help="port of the HTTP status endpoint")
    parser.add_argument("--id", default=None, help="node id reported by the status endpoint")
    sub = parser.add_subparsers(dest="mode", required=True)

    master = sub.add_parser("master", help="act as the time reference")
    master.add_argument("addr", type=parse_address, help="local bind address, host:port")
    master.add_argument("target", type=parse_address, nargs="?",
                        default=("255.255.255.255", DEFAULT_PORT),
                        help="beacon destination, host:port")
    master.add_argument("--period-ms", type=int, default=500)
    master.add_argument("--recv-buffer", type=int, default=1024)

    slave = sub.add_parser("slave", help="follow a master's beacons")
    slave.add_argument("addr", type=parse_address, help="local bind address, host:port")
    slave.add_argument("--mean-window", type=int, default=64)
    slave.add_argument("--recv-buffer", type=int, default=1024)
    return parser.parse_args(argv)


def main(argv=None):
    setup_logging()
    args = parse_args(argv)

    if args.mode == "master":
        config = MasterConfig(sync_period=args.period_ms / 1000.0, target=args.target,
                              recv_buffer_size=args.recv_buffer)
        master = Master.bind(args.addr, config)
        app = make_master_app(master, node_id=args.id or "master")
    else:
        config = SlaveConfig(mean_window=args.mean_window, recv_buffer_size=args.recv_buffer)
        slave, channel = Slave.bind(args.addr, config)
        app = make_slave_app(slave, channel, SyncMonitor(), node_id=args.id or "slave")

    web.run_app(app, host=args.status_host, port=args.status_port)


if __name__ == "__main__":
    main()
