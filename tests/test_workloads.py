import pyodbc
import pytest

from sqlbench.errors import WorkloadError
from sqlbench.runner import workloads
from sqlbench.runner.workloads import (WORKLOADS, ScaledSizes, build_workload_plan,
                                       compute_scaled_size, parallel_degrees,
                                       parallel_query_specs, run_workload)

from .conftest import FakeConnection


def spec_named(name):
    return next(w for w in WORKLOADS if w.name == name)


@pytest.mark.parametrize("duration", [1, 5, 10, 15, 60, 600])
@pytest.mark.parametrize("cores", [1, 2, 4, 8, 16, 64])
def test_scaled_size_formula(duration, cores):
    sizes = compute_scaled_size(duration, cores)
    single = int(100000 * max(1, duration / 10))
    assert sizes.single_thread == single
    assert sizes.multi_thread == single * min(cores, 8)
    assert sizes.parallel_test == single // 2


def test_short_durations_use_base_unit():
    assert compute_scaled_size(3, 4).single_thread == 100000


def test_zero_cores_treated_as_one():
    assert compute_scaled_size(60, 0).multi_thread == 600000


def test_caps_apply_after_scaling():
    sizes = compute_scaled_size(100000, 64)
    assert spec_named('CPU_Integer_SingleThread').size(sizes) == workloads.ITERATION_CAP
    assert spec_named('Hash_Aggregate').size(sizes) == workloads.HASH_ROW_CAP
    assert spec_named('Memory_Scan').size(sizes) == workloads.SCAN_ROW_CAP
    assert spec_named('Compression_RoundTrip').size(sizes) == workloads.COMPRESSION_CAP
    assert parallel_query_specs(16)[0].size(sizes) == workloads.PARALLEL_ROW_CAP


def test_sizes_below_caps_are_untouched():
    sizes = ScaledSizes(single_thread=600000, multi_thread=2400000, parallel_test=300000)
    assert spec_named('CPU_Integer_SingleThread').size(sizes) == 600000
    assert spec_named('CPU_String_SingleThread').size(sizes) == 300000
    assert spec_named('Hash_Aggregate').size(sizes) == 2400000
    assert spec_named('Memory_Scan').size(sizes) == 4800000


@pytest.mark.parametrize("logical,expected", [
    (1, [1]),
    (2, [1, 2]),
    (4, [1, 2, 4]),
    (6, [1, 2, 4]),
    (8, [1, 2, 4, 8]),
    (16, [1, 2, 4, 8, 0]),
])
def test_parallel_degrees(logical, expected):
    assert parallel_degrees(logical) == expected


def test_parallel_query_names():
    names = [spec.name for spec in parallel_query_specs(32)]
    assert names == [
        'Parallel_Query_MAXDOP_1', 'Parallel_Query_MAXDOP_2', 'Parallel_Query_MAXDOP_4',
        'Parallel_Query_MAXDOP_8', 'Parallel_Query_MAXDOP_Unlimited',
    ]


def test_parallel_query_sql_carries_maxdop():
    sizes = compute_scaled_size(10, 1)
    sql = parallel_query_specs(4)[2].sql(sizes)
    assert 'OPTION (MAXDOP 4)' in sql


def test_plan_without_features():
    names = [spec.name for spec in build_workload_plan(4, set())]
    assert names == [
        'CPU_Integer_SingleThread', 'CPU_Float_SingleThread', 'CPU_String_SingleThread',
        'Hash_Aggregate', 'Compression_RoundTrip', 'Memory_Scan',
        'Parallel_Query_MAXDOP_1', 'Parallel_Query_MAXDOP_2', 'Parallel_Query_MAXDOP_4',
    ]


def test_plan_with_features_appends_batteries_last():
    names = [spec.name for spec in build_workload_plan(1, {'sort', 'index'})]
    assert names[-5:] == ['Parallel_Query_MAXDOP_1', 'Sort_MultiKey', 'Sort_TopN',
                          'Index_Seek', 'Index_Scan']


def test_plan_with_only_index_feature():
    names = [spec.name for spec in build_workload_plan(1, {'index'})]
    assert 'Sort_MultiKey' not in names
    assert names[-2:] == ['Index_Seek', 'Index_Scan']


def test_every_kind_builds_sql():
    sizes = compute_scaled_size(10, 2)
    for spec in WORKLOADS + parallel_query_specs(16):
        sql = spec.sql(sizes)
        assert '?' in sql
        assert 'elapsed_ms' in sql
        assert 'verification' in sql


def test_index_sql_has_row_count_formatted():
    sizes = compute_scaled_size(10, 2)
    sql = spec_named('Index_Scan').sql(sizes)
    assert 'SET @rows = 200000;' in sql


def test_integer_workload_rate():
    conn = FakeConnection(elapsed_ms=1000)
    sizes = compute_scaled_size(60, 4)

    result = run_workload(conn, spec_named('CPU_Integer_SingleThread'), sizes)

    assert conn.calls[0][1] == [600000]
    assert result.iterations == 600000
    assert result.row_count is None
    assert result.sql_elapsed_ms == 1000
    assert result.iterations_per_sec == 600000.0
    assert result.rows_per_sec is None
    assert result.throughput_mbps is None


def test_row_workload_fills_rows_per_sec():
    conn = FakeConnection(elapsed_ms=500)
    sizes = compute_scaled_size(10, 2)

    result = run_workload(conn, spec_named('Hash_Aggregate'), sizes)

    assert result.row_count == 200000
    assert result.iterations is None
    assert result.rows_per_sec == 400000.0
    assert result.iterations_per_sec is None


def test_throughput_workload_uses_megabytes():
    conn = FakeConnection(elapsed_ms=2000, megabytes=500.0)
    sizes = compute_scaled_size(10, 2)

    result = run_workload(conn, spec_named('Memory_Scan'), sizes)

    assert result.throughput_mbps == 250.0
    assert result.rows_per_sec is None
    assert result.iterations_per_sec is None


def test_zero_elapsed_leaves_rate_absent():
    conn = FakeConnection(elapsed_ms=0)
    sizes = compute_scaled_size(10, 1)

    result = run_workload(conn, spec_named('CPU_Float_SingleThread'), sizes)

    assert result.sql_elapsed_ms == 0
    assert result.iterations_per_sec is None


def test_verification_mismatch_is_a_failure():
    conn = FakeConnection(canned={'SYSDATETIME()': [{'elapsed_ms': 10, 'verification': 5}]})
    sizes = compute_scaled_size(10, 1)

    with pytest.raises(WorkloadError) as excinfo:
        run_workload(conn, spec_named('CPU_Integer_SingleThread'), sizes)
    assert excinfo.value.test_name == 'CPU_Integer_SingleThread'


def test_empty_result_is_a_failure():
    conn = FakeConnection(canned={'SYSDATETIME()': []})
    with pytest.raises(WorkloadError):
        run_workload(conn, spec_named('Hash_Aggregate'), compute_scaled_size(10, 1))


def test_driver_error_becomes_workload_error():
    conn = FakeConnection(fail_on='#bench_hash')
    with pytest.raises(WorkloadError) as excinfo:
        run_workload(conn, spec_named('Hash_Aggregate'), compute_scaled_size(10, 1))
    assert 'Query timeout expired' in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, pyodbc.Error)
