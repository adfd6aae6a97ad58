"""Shared fixtures: a fake SQL Server connection and record builders."""

from datetime import datetime

import pyodbc
import pytest

from sqlbench.models import HardwareProfile, RunRecord, SoftwareProfile
from sqlbench.runner import profiles


class FakeConnection:
    """Stands in for SqlServerConnection.

    Profile queries return canned rows. Workload batches report
    ``elapsed_ms`` (an int or a callable taking the SQL text) and echo the
    size parameter back as the verification value. Any query containing a
    key of ``canned`` gets that value: rows, a (columns, rows) pair, or an
    exception to raise.
    """

    def __init__(self, elapsed_ms=1000, megabytes=250.0, logical_cpus=4,
                 os_probe_fails=False, fail_on=None, software_fails=False,
                 canned=None):
        self.elapsed_ms = elapsed_ms
        self.megabytes = megabytes
        self.logical_cpus = logical_cpus
        self.os_probe_fails = os_probe_fails
        self.fail_on = fail_on
        self.software_fails = software_fails
        self.canned = canned or {}
        self.calls = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True

    def query_with_columns(self, sql, params=()):
        rows = self.query(sql, params)
        for marker, response in self.canned.items():
            if marker in sql and isinstance(response, tuple):
                return response
        return (list(rows[0]) if rows else []), rows

    def query(self, sql, params=()):
        self.calls.append((sql, list(params)))

        for marker, response in self.canned.items():
            if marker in sql:
                if isinstance(response, Exception):
                    raise response
                if isinstance(response, tuple):
                    return response[1]
                return response

        if sql == profiles.SOFTWARE_SQL:
            if self.software_fails:
                raise pyodbc.Error('08S01', 'Communication link failure')
            return [{
                'version': '16.0.4135.4',
                'edition': 'Developer Edition (64-bit)',
                'engine_edition': 3,
                'product_level': 'RTM',
                'is_clustered': 0,
                'is_hadr_enabled': 1,
            }]
        if sql == profiles.ENGINE_HARDWARE_SQL:
            return [{
                'machine_name': 'SQLNODE01',
                'logical_cpus': self.logical_cpus,
                'hyperthread_ratio': 2,
                'sockets': 1,
                'cores_per_socket': self.logical_cpus // 2,
                'numa_nodes': 1,
                'physical_memory_mb': 32768,
            }]
        if sql == profiles.CONFIGURATION_SQL:
            return [
                {'name': 'max degree of parallelism', 'value': 4},
                {'name': 'cost threshold for parallelism', 'value': 50},
            ]
        if sql == profiles.OS_CPU_PROBE_SQL:
            if self.os_probe_fails:
                raise pyodbc.Error('42000', 'EXECUTE permission denied on xp_instance_regread')
            return [{'cpu_model': 'Intel(R) Xeon(R) Gold 6338 CPU @ 2.00GHz', 'cpu_clock_mhz': 1995}]

        if self.fail_on and self.fail_on in sql:
            raise pyodbc.Error('HYT00', 'Query timeout expired')

        elapsed = self.elapsed_ms(sql) if callable(self.elapsed_ms) else self.elapsed_ms
        return [{
            'elapsed_ms': elapsed,
            'verification': params[0],
            'megabytes': self.megabytes,
            'checksum': 42,
        }]

    def workload_calls(self):
        return [(sql, params) for sql, params in self.calls if 'SYSDATETIME()' in sql]


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def hardware():
    return HardwareProfile(
        machine_name='SQLNODE01',
        cpu_model='Intel(R) Xeon(R) Gold 6338 CPU @ 2.00GHz',
        cpu_clock_mhz=1995,
        logical_cpus=8,
        physical_cores=4,
        sockets=1,
        hyperthread_ratio=2,
        numa_nodes=1,
        physical_memory_mb=32768,
        max_dop=4,
        cost_threshold=50,
    )


@pytest.fixture
def software():
    return SoftwareProfile(version='16.0.4135.4', edition='Developer Edition (64-bit)',
                           engine_edition=3, product_level='RTM')


def make_record(machine='MachineA', test='CPU_Integer_SingleThread',
                timestamp=datetime(2026, 3, 1, 12, 0, 0), iterations_per_sec=None,
                rows_per_sec=None, throughput_mbps=None, sql_elapsed_ms=1000,
                iterations=None, row_count=None, cpu_model='Test CPU'):
    return RunRecord(
        timestamp=timestamp,
        machine_name=machine,
        cpu_model=cpu_model,
        logical_cpus=8,
        physical_cores=4,
        sockets=1,
        hyperthread_ratio=2,
        numa_nodes=1,
        physical_memory_mb=16384,
        sql_version='16.0.4135.4',
        sql_edition='Developer Edition (64-bit)',
        max_dop=0,
        test_name=test,
        iterations=iterations,
        row_count=row_count,
        sql_elapsed_ms=sql_elapsed_ms,
        client_elapsed_ms=sql_elapsed_ms + 5,
        iterations_per_sec=iterations_per_sec,
        rows_per_sec=rows_per_sec,
        throughput_mbps=throughput_mbps,
        duration_seconds=60,
    )
