#!/usr/bin/env python3
"""
SQL Server Benchmark Results Aggregator

Loads result files produced by the runner, keeps the most recent result per
(machine, test) pair and picks the canonical metric used for cross-machine
comparison.
"""

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Union

from ..errors import BenchmarkError, NoResultsError
from ..models import (ElapsedMsFallback, IterationsPerSec, Metric, RowsPerSec,
                      RunRecord, ThroughputMBps)
from ..results_file import read_records, result_file_glob

logger = logging.getLogger(__name__)

EntryKey = Tuple[str, str]


@dataclass(frozen=True)
class ComparisonEntry:
    """Latest metric for one (test, machine) pair."""
    test_name: str
    machine_name: str
    metric: Metric
    record: RunRecord


def find_result_files(path: Union[str, Path]) -> List[Path]:
    path = Path(path)
    if path.is_file():
        return [path]
    if path.is_dir():
        return sorted(path.glob(result_file_glob()))
    raise NoResultsError(f"No results found: {path} does not exist")


def load_results(path: Union[str, Path]) -> List[RunRecord]:
    """Load every record from a result file or a directory of result files.

    Rows are concatenated in file order; duplicates are kept.
    """
    files = find_result_files(path)
    if not files:
        raise NoResultsError(f"No results found in {path}")

    records = []
    for result_file in files:
        file_records = read_records(result_file)
        logger.debug(f"Loaded {len(file_records)} records from {result_file}")
        records.extend(file_records)

    logger.info(f"Loaded {len(records)} records from {len(files)} file(s)")
    return records


def pick_canonical_metric(record: RunRecord) -> Metric:
    """Iterations/sec, then rows/sec, then MB/sec, then elapsed ms."""
    if record.iterations_per_sec is not None:
        return IterationsPerSec(record.iterations_per_sec)
    if record.rows_per_sec is not None:
        return RowsPerSec(record.rows_per_sec)
    if record.throughput_mbps is not None:
        return ThroughputMBps(record.throughput_mbps)
    return ElapsedMsFallback(float(record.sql_elapsed_ms))


def select_latest_per_key(records: List[RunRecord]) -> Dict[EntryKey, ComparisonEntry]:
    """Keep the record with the latest timestamp for each (test, machine).

    Pairs without any record are simply absent from the result.
    """
    by_machine: Dict[str, Dict[str, RunRecord]] = {}
    for record in records:
        tests = by_machine.setdefault(record.machine_name, {})
        current = tests.get(record.test_name)
        if current is None or record.timestamp > current.timestamp:
            tests[record.test_name] = record

    entries = {}
    for machine, tests in by_machine.items():
        for test_name, record in tests.items():
            entries[(test_name, machine)] = ComparisonEntry(
                test_name=test_name,
                machine_name=machine,
                metric=pick_canonical_metric(record),
                record=record,
            )
    return entries


def ordered_test_names(records: List[RunRecord]) -> List[str]:
    """Distinct test names in first-seen order (the runner's execution order)."""
    seen = {}
    for record in records:
        seen.setdefault(record.test_name, None)
    return list(seen)


def ordered_machines(records: List[RunRecord]) -> List[str]:
    return sorted({record.machine_name for record in records})


def export_summary_json(records: List[RunRecord], output_file: str):
    """Export the latest canonical metric per (test, machine) as JSON."""
    entries = select_latest_per_key(records)
    summary = {
        "machines": ordered_machines(records),
        "tests": ordered_test_names(records),
        "entries": [
            {
                "test_name": entry.test_name,
                "machine_name": entry.machine_name,
                "metric": type(entry.metric).__name__,
                "value": entry.metric.value,
                "unit": entry.metric.unit,
                "timestamp": entry.record.timestamp.isoformat(sep=' '),
            }
            for entry in entries.values()
        ],
    }

    with open(output_file, 'w') as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Summary exported to {output_file}")


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='Aggregate benchmark result files')
    parser.add_argument('--input', '-i', default='results',
                        help='Result file or directory containing result files')
    parser.add_argument('--output', '-o', default='summary.json',
                        help='Output summary file')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        records = load_results(args.input)
        export_summary_json(records, args.output)
    except BenchmarkError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
