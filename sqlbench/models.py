"""
Data model shared by the benchmark runner and the comparison reporter.

HardwareProfile and SoftwareProfile are captured once per run,
BenchmarkResult once per workload, and RunRecord is the flattened row that
gets persisted to the result file.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class HardwareProfile:
    """Machine identity and capacity facts for the target server."""
    machine_name: str = UNKNOWN
    cpu_model: str = UNKNOWN
    cpu_clock_mhz: int = 0
    logical_cpus: int = 0
    physical_cores: int = 0
    sockets: int = 0
    hyperthread_ratio: int = 0
    numa_nodes: int = 0
    physical_memory_mb: int = 0
    max_dop: int = 0
    cost_threshold: int = 0


@dataclass(frozen=True)
class SoftwareProfile:
    """Version and feature flags of the target database engine."""
    version: str = UNKNOWN
    edition: str = UNKNOWN
    engine_edition: int = 0
    product_level: str = ""
    is_clustered: bool = False
    is_hadr_enabled: bool = False


def compute_rate(amount: float, elapsed_ms: int) -> Optional[float]:
    """Return amount per second rounded to 2 places, or None when elapsed is 0."""
    if elapsed_ms <= 0:
        return None
    return round(amount / (elapsed_ms / 1000.0), 2)


@dataclass(frozen=True)
class BenchmarkResult:
    """Outcome of one executed workload."""
    test_name: str
    sql_elapsed_ms: int
    client_elapsed_ms: int
    iterations: Optional[int] = None
    row_count: Optional[int] = None
    iterations_per_sec: Optional[float] = None
    rows_per_sec: Optional[float] = None
    throughput_mbps: Optional[float] = None
    verification: Optional[int] = None

    def __post_init__(self):
        if self.sql_elapsed_ms < 0 or self.client_elapsed_ms < 0:
            raise ValueError(f"Elapsed time must be >= 0 for {self.test_name}")


@dataclass(frozen=True)
class RunRecord:
    """One persisted result row: profiles + result + run metadata."""
    timestamp: datetime
    machine_name: str
    cpu_model: str
    logical_cpus: int
    physical_cores: int
    sockets: int
    hyperthread_ratio: int
    numa_nodes: int
    physical_memory_mb: int
    sql_version: str
    sql_edition: str
    max_dop: int
    test_name: str
    iterations: Optional[int]
    row_count: Optional[int]
    sql_elapsed_ms: int
    client_elapsed_ms: int
    iterations_per_sec: Optional[float]
    rows_per_sec: Optional[float]
    throughput_mbps: Optional[float]
    duration_seconds: int

    @classmethod
    def build(cls, timestamp: datetime, hardware: HardwareProfile,
              software: SoftwareProfile, result: BenchmarkResult,
              duration_seconds: int) -> 'RunRecord':
        """Flatten the run's profiles and one result into a record."""
        return cls(
            timestamp=timestamp.replace(microsecond=0),
            machine_name=hardware.machine_name,
            cpu_model=hardware.cpu_model,
            logical_cpus=hardware.logical_cpus,
            physical_cores=hardware.physical_cores,
            sockets=hardware.sockets,
            hyperthread_ratio=hardware.hyperthread_ratio,
            numa_nodes=hardware.numa_nodes,
            physical_memory_mb=hardware.physical_memory_mb,
            sql_version=software.version,
            sql_edition=software.edition,
            max_dop=hardware.max_dop,
            test_name=result.test_name,
            iterations=result.iterations,
            row_count=result.row_count,
            sql_elapsed_ms=result.sql_elapsed_ms,
            client_elapsed_ms=result.client_elapsed_ms,
            iterations_per_sec=result.iterations_per_sec,
            rows_per_sec=result.rows_per_sec,
            throughput_mbps=result.throughput_mbps,
            duration_seconds=duration_seconds,
        )


# Canonical metric variants. Precedence is the order of METRIC_PRECEDENCE.

@dataclass(frozen=True)
class Metric:
    value: float

    unit = ""
    label = ""
    higher_is_better = True

    def format(self) -> str:
        return f"{self.value:,.2f} {self.unit}"


@dataclass(frozen=True)
class IterationsPerSec(Metric):
    unit = "iter/s"
    label = "Iterations/sec"


@dataclass(frozen=True)
class RowsPerSec(Metric):
    unit = "rows/s"
    label = "Rows/sec"


@dataclass(frozen=True)
class ThroughputMBps(Metric):
    unit = "MB/s"
    label = "MB/sec"


@dataclass(frozen=True)
class ElapsedMsFallback(Metric):
    """Used only when a record carries no rate; lower is better."""
    unit = "ms"
    label = "Elapsed ms"
    higher_is_better = False

    def format(self) -> str:
        return f"{self.value:,.0f} {self.unit}"


METRIC_PRECEDENCE = (IterationsPerSec, RowsPerSec, ThroughputMBps, ElapsedMsFallback)
