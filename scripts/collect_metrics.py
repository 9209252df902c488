#!/usr/bin/env python3
"""
Metrics Collection Script for timesync nodes

Polls the HTTP status endpoint of every master and slave and summarizes the
offsets the slaves currently report.

Usage:
    python collect_metrics.py --nodes 8100,8101,8102 --output metrics_report.json
"""

import asyncio
import aiohttp
import argparse
import json
from datetime import datetime
from typing import List, Dict, Any


class MetricsCollector:
    def __init__(self, nodes: List[str], host: str = "127.0.0.1"):
        self.nodes = nodes
        self.host = host
        self.metrics = {
            "collection_time": None,
            "nodes": {},
            "master_summary": {},
            "time_sync_summary": {},
        }

    async def fetch(self, session: aiohttp.ClientSession, node: str, path: str) -> Dict[str, Any]:
        """GET a JSON endpoint of a node, returning an error dict on failure"""
        url = f"http://{self.host}:{node}{path}"
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=5)) as resp:
                if resp.status == 200:
                    return await resp.json()
                return {"error": f"HTTP {resp.status}"}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"error": str(e) or type(e).__name__}

    async def collect_node(self, session: aiohttp.ClientSession, node: str) -> Dict[str, Any]:
        status = await self.fetch(session, node, "/status")
        data = {"status": status}
        if status.get("role") == "slave":
            data["time_stats"] = await self.fetch(session, node, "/time/stats")
        return data

    async def collect_all_metrics(self):
        """Collect metrics from all nodes"""
        print("Collecting metrics from timesync nodes...")
        self.metrics["collection_time"] = datetime.now().isoformat()

        async with aiohttp.ClientSession() as session:
            results = await asyncio.gather(*(self.collect_node(session, node) for node in self.nodes))

        for node, data in zip(self.nodes, results):
            self.metrics["nodes"][node] = data

        self._generate_summaries()
        print("Metrics collection complete\n")

    def _generate_summaries(self):
        beacons = 0
        answered = 0
        master_errors = 0
        offsets = []
        drift_rates = []
        synchronized = 0
        violations = 0

        for data in self.metrics["nodes"].values():
            status = data.get("status", {})
            if "error" in status:
                continue
            if status.get("role") == "master":
                beacons += status.get("beacons_sent", 0)
                answered += status.get("delay_requests_answered", 0)
                master_errors += (status.get("send_errors", 0) + status.get("recv_errors", 0)
                                  + status.get("decode_errors", 0))
                continue

            sync = status.get("time_synchronization", {})
            if sync.get("offset_updates"):
                offsets.append(sync["clock_offset"])
                drift_rates.append(sync.get("drift_rate", 0.0))
            if sync.get("synchronized"):
                synchronized += 1
            violations += sync.get("sequence_violations", 0)

        self.metrics["master_summary"] = {
            "beacons_sent": beacons,
            "delay_requests_answered": answered,
            "errors": master_errors,
        }
        self.metrics["time_sync_summary"] = {
            "reporting_slaves": len(offsets),
            "synchronized_slaves": synchronized,
            "avg_clock_offset": sum(offsets) / len(offsets) if offsets else 0,
            "max_abs_clock_offset": max((abs(o) for o in offsets), default=0),
            "avg_drift_rate": sum(drift_rates) / len(drift_rates) if drift_rates else 0,
            "sequence_violations": violations,
        }

    def print_report(self):
        """Print human-readable metrics report"""
        print("=" * 70)
        print("TIMESYNC METRICS REPORT")
        print("=" * 70)
        print(f"\nCollection Time: {self.metrics['collection_time']}")

        master = self.metrics["master_summary"]
        print("\nMasters:")
        print(f"   Beacons Sent: {master['beacons_sent']}")
        print(f"   Delay Requests Answered: {master['delay_requests_answered']}")
        print(f"   Errors: {master['errors']}")

        summary = self.metrics["time_sync_summary"]
        print("\nSlaves:")
        print(f"   Reporting: {summary['reporting_slaves']} "
              f"(synchronized: {summary['synchronized_slaves']})")
        print(f"   Average Clock Offset: {summary['avg_clock_offset']:.6f}s")
        print(f"   Max |Clock Offset|: {summary['max_abs_clock_offset']:.6f}s")
        print(f"   Average Drift Rate: {summary['avg_drift_rate']:.9f}s/s")
        print(f"   Sequence Violations: {summary['sequence_violations']}")

        print("\nPer-Node Details:")
        for node, data in self.metrics["nodes"].items():
            status = data.get("status", {})
            print(f"\n   Port {node}:")
            if "error" in status:
                print(f"      Error: {status['error']}")
                continue
            print(f"      Role: {status.get('role', 'unknown')}")
            print(f"      Node ID: {status.get('node_id', 'N/A')}")
            if status.get("role") == "slave":
                sync = status.get("time_synchronization", {})
                print(f"      State: {status.get('state', 'unknown')}")
                print(f"      Offset: {sync.get('clock_offset_display', 'n/a')}")
                print(f"      Window: {status.get('window_size', 0)}/{status.get('window_capacity', 0)}")

        print("\n" + "=" * 70)

    def save_results(self, filename: str):
        """Save metrics to JSON file"""
        with open(filename, 'w') as f:
            json.dump(self.metrics, f, indent=2)
        print(f"Metrics saved to {filename}")


def main():
    parser = argparse.ArgumentParser(description="Collect metrics from timesync nodes")
    parser.add_argument("--nodes", type=str, default="8100",
                        help="Comma-separated list of status ports")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--output", type=str, default="metrics_report.json",
                        help="Output JSON file for metrics")
    parser.add_argument("--quiet", action="store_true",
                        help="Suppress console output")

    args = parser.parse_args()

    nodes = [n.strip() for n in args.nodes.split(",") if n.strip()]
    collector = MetricsCollector(nodes, host=args.host)

    asyncio.run(collector.collect_all_metrics())

    if not args.quiet:
        collector.print_report()

    collector.save_results(args.output)
    return 0


if __name__ == "__main__":
    exit(main())
