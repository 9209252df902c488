import time
import logging
from aiohttp import web

from timesync.time.offset import utc_now

logger = logging.getLogger(__name__)


async def time_handler(request):
    """
    Current local time, the estimate of the master's time and the offset
    between them.
    """
    monitor = request.app.get('monitor')
    if monitor is None:
        return web.json_response(
            {"status": "error", "message": "Time synchronization not available"},
            status=503
        )

    local_time = utc_now()
    synchronized_time = monitor.get_synchronized_time(local_time)

    return web.json_response({
        "local_time": local_time.isoformat(),
        "synchronized_time": synchronized_time.isoformat(),
        "clock_offset": monitor.clock_offset.total_seconds(),
        "is_synchronized": monitor.is_synchronized(),
        "node_id": request.app.get('node_id', 'unknown'),
    })


async def clock_status_handler(request):
    """
    Detailed synchronization status including the drift analysis.
    """
    monitor = request.app.get('monitor')
    current_time = time.time()

    status = {
        "role": "slave",
        "current_time": current_time,
        "node_id": request.app.get('node_id', 'unknown'),
    }

    if monitor:
        status["time_synchronization"] = monitor.get_sync_status()
        status["clock_skew_analysis"] = monitor.analyzer.get_skew_statistics()
    else:
        status["time_synchronization"] = {"status": "not_available"}
        status["clock_skew_analysis"] = {"status": "not_available"}

    slave = request.app.get('slave')
    if slave:
        status["state"] = type(slave.state).__name__
        status["window_size"] = len(slave.window)
        status["window_capacity"] = slave.window.capacity

    return web.json_response(status)


async def time_stats_handler(request):
    """
    Condensed counters for metrics collection.
    """
    monitor = request.app.get('monitor')
    if monitor is None:
        return web.json_response(
            {"status": "error", "message": "Time synchronization not available"},
            status=503
        )

    try:
        sync_status = monitor.get_sync_status()
        skew_stats = monitor.analyzer.get_skew_statistics()
        stats = {
            "timestamp": time.time(),
            "node_id": request.app.get('node_id', 'unknown'),
            "synchronization": {
                "is_synchronized": sync_status["synchronized"],
                "current_offset": sync_status["clock_offset"],
                "offset_updates": sync_status["offset_updates"],
                "sequence_violations": sync_status["sequence_violations"],
                "format_errors": sync_status["format_errors"],
                "io_errors": sync_status["io_errors"],
            },
        }
        if "current_skew" in skew_stats:
            stats["clock_skew"] = {
                "drift_rate": skew_stats["drift_rate"],
                "measurements": skew_stats["measurements"],
                "std_deviation": skew_stats["std_deviation"],
                "acceptable": skew_stats["acceptable"],
            }
    except Exception as e:
        logger.error(f"Time stats request failed: {e}")
        return web.json_response(
            {"status": "error", "message": f"Stats request failed: {str(e)}"},
            status=500
        )

    return web.json_response({
        "status": "ok",
        "statistics": stats
    })


async def reset_stats_handler(request):
    """
    Reset monitor counters and drift analysis (for testing/debugging).
    """
    monitor = request.app.get('monitor')
    if monitor is None:
        return web.json_response(
            {"status": "error", "message": "Time synchronization not available"},
            status=503
        )

    monitor.reset_statistics()
    return web.json_response({
        "status": "ok",
        "message": "Time statistics reset",
        "timestamp": time.time()
    })


async def master_status_handler(request):
    """
    Beacon and responder counters of a master node.
    """
    master = request.app.get('master')
    if master is None:
        return web.json_response(
            {"status": "error", "message": "Master not available"},
            status=503
        )

    status = master.get_status()
    status["node_id"] = request.app.get('node_id', 'unknown')
    status["current_time"] = utc_now().isoformat()
    return web.json_response(status)
