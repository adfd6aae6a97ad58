#!/usr/bin/env python3
"""
SQL Server CPU Benchmark Runner

Connects to a SQL Server instance, records its hardware and software
profile, runs a fixed battery of synthetic T-SQL workloads sized by the
requested duration and core count, and writes one CSV row per test.

Workload order:
  1. warmup (discarded, skipped with --skip-warmup)
  2. mandatory CPU / aggregation / compression / memory scan workloads
  3. parallel query at MAXDOP 1, 2, 4, 8 and unlimited (gated by CPU count)
  4. sort battery (--enable-sort) and index battery (--enable-index)

A failing workload aborts the run; partial results are never written.

Usage:
  python -m sqlbench.runner.bench --server=sql01 --duration=60
  python -m sqlbench.runner.bench --server=sql01 --enable-sort --enable-index
  python -m sqlbench.runner.bench --config=bench.json --output-dir=./results
"""

import argparse
import datetime
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from ..config import RunConfig, load_config
from ..connection import SqlServerConnection
from ..errors import BenchmarkError
from ..models import BenchmarkResult, HardwareProfile, RunRecord, SoftwareProfile
from ..results_file import read_records, result_filename, write_records
from .profiles import collect_hardware_profile, collect_software_profile
from .workloads import (WARMUP, WorkloadSpec, build_workload_plan,
                        compute_scaled_size, run_workload)

logger = logging.getLogger(__name__)


def run_benchmark_suite(conn, config: RunConfig, hardware: HardwareProfile,
                        workloads: Optional[List[WorkloadSpec]] = None,
                        sleep=time.sleep) -> List[BenchmarkResult]:
    """Run the warmup and every planned workload once, strictly in order."""
    sizes = compute_scaled_size(config.duration_seconds, hardware.physical_cores)
    logger.info(f"Workload sizes: single={sizes.single_thread:,} "
                f"multi={sizes.multi_thread:,} parallel={sizes.parallel_test:,}")

    if not config.skip_warmup:
        logger.info("Running warmup...")
        run_workload(conn, WARMUP, sizes)
        sleep(config.warmup_settle_seconds)

    plan = build_workload_plan(hardware.logical_cpus, config.features, workloads)
    results = []
    for index, spec in enumerate(plan, start=1):
        logger.info(f"[{index}/{len(plan)}] Running {spec.name}...")
        result = run_workload(conn, spec, sizes)
        logger.info(f"[{index}/{len(plan)}] {spec.name}: {result.sql_elapsed_ms} ms "
                    f"(client {result.client_elapsed_ms} ms)")
        results.append(result)

    return results


def persist_results(hardware: HardwareProfile, software: SoftwareProfile,
                    results: List[BenchmarkResult], destination: Path,
                    duration_seconds: int,
                    timestamp: Optional[datetime.datetime] = None) -> Path:
    """Write one row per result to a new, timestamped file."""
    timestamp = (timestamp or datetime.datetime.now()).replace(microsecond=0)
    records = [RunRecord.build(timestamp, hardware, software, result, duration_seconds)
               for result in results]
    filepath = Path(destination) / result_filename(hardware.machine_name, timestamp)
    write_records(records, filepath)
    logger.info(f"Saved {len(records)} results to {filepath}")
    return filepath


class BenchmarkRunner:
    """Orchestrates one benchmark run against one server."""

    def __init__(self, config: RunConfig, connection_factory=None):
        self.config = config
        self.connection_factory = connection_factory or self._default_connection

    def _default_connection(self) -> SqlServerConnection:
        return SqlServerConnection(
            server=self.config.server,
            database=self.config.database,
            driver=self.config.driver,
            username=self.config.username,
            password=self.config.password,
            login_timeout=self.config.login_timeout,
            query_timeout=self.config.query_timeout,
        )

    def run(self) -> Path:
        """Collect profiles, run the suite and persist the results."""
        logger.info(f"Starting benchmark against {self.config.server} "
                    f"({self.config.duration_seconds}s target duration)")

        with self.connection_factory() as conn:
            software = collect_software_profile(conn)
            logger.info(f"SQL Server {software.version} {software.edition}")

            hardware = collect_hardware_profile(conn)
            logger.info(f"Hardware: {hardware.machine_name}, {hardware.cpu_model}, "
                        f"{hardware.logical_cpus} logical / {hardware.physical_cores} physical CPUs, "
                        f"{hardware.numa_nodes} NUMA nodes, {hardware.physical_memory_mb} MB RAM, "
                        f"MAXDOP {hardware.max_dop}, cost threshold {hardware.cost_threshold}")

            results = run_benchmark_suite(conn, self.config, hardware)

        return persist_results(hardware, software, results, self.config.output_dir,
                               self.config.duration_seconds)


def print_summary(filepath: Path):
    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)
    print(f"\nResults saved to: {filepath}\n")
    for record in read_records(filepath):
        rates = (record.iterations_per_sec, record.rows_per_sec, record.throughput_mbps)
        rate = next((r for r in rates if r is not None), None)
        rate_text = f"{rate:,.2f}" if rate is not None else "N/A"
        print(f"  {record.test_name:<32} {record.sql_elapsed_ms:>8} ms  {rate_text:>16}")


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="SQL Server CPU Benchmark Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --server=sql01 --duration=60
  %(prog)s --server=sql01 --enable-sort --enable-index --skip-warmup
  %(prog)s --config=bench.json
        """
    )

    parser.add_argument('--server', '-s', help="Target SQL Server (host[\\instance][,port])")
    parser.add_argument('--database', '-d', help="Database to run in (default: tempdb)")
    parser.add_argument('--duration', type=int, dest='duration_seconds',
                        help="Target run duration in seconds (default: 60)")
    parser.add_argument('--output-dir', '-o', type=Path, help="Output directory for results")
    parser.add_argument('--enable-sort', action='store_true', default=None,
                        help="Run the sort battery")
    parser.add_argument('--enable-index', action='store_true', default=None,
                        help="Run the index seek/scan battery")
    parser.add_argument('--skip-warmup', action='store_true', default=None,
                        help="Skip the warmup workload")
    parser.add_argument('--driver', help="ODBC driver name")
    parser.add_argument('--user', '-u', dest='username',
                        help="SQL login (password from SQLBENCH_PASSWORD); "
                             "integrated authentication when omitted")
    parser.add_argument('--config', '-c', type=Path, help="Configuration file (JSON)")
    parser.add_argument('--verbose', '-v', action='store_true', help="Enable verbose logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    overrides = {k: v for k, v in vars(args).items() if k not in ('config', 'verbose')}
    try:
        config = load_config(args.config, overrides)
    except (OSError, ValueError) as e:
        parser.error(f"Invalid configuration: {e}")

    try:
        filepath = BenchmarkRunner(config).run()
    except BenchmarkError as e:
        logger.error(str(e))
        return 1

    print_summary(filepath)
    return 0


if __name__ == '__main__':
    sys.exit(main())
