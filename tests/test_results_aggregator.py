import json
from datetime import datetime

import pytest

from sqlbench.dashboard.results_aggregator import (export_summary_json, load_results, main,
                                                   ordered_machines, ordered_test_names,
                                                   pick_canonical_metric, select_latest_per_key)
from sqlbench.errors import NoResultsError
from sqlbench.models import (ElapsedMsFallback, IterationsPerSec, RowsPerSec,
                             ThroughputMBps)
from sqlbench.results_file import write_records

from .conftest import make_record

EARLY = datetime(2026, 3, 1, 8, 0, 0)
LATE = datetime(2026, 3, 2, 8, 0, 0)


def test_latest_record_wins_regardless_of_order():
    old = make_record(timestamp=EARLY, iterations_per_sec=100.0)
    new = make_record(timestamp=LATE, iterations_per_sec=200.0)

    for records in ([old, new], [new, old]):
        entries = select_latest_per_key(records)
        entry = entries[('CPU_Integer_SingleThread', 'MachineA')]
        assert entry.metric == IterationsPerSec(200.0)
        assert entry.record is new


def test_selection_is_idempotent():
    records = [
        make_record(machine='MachineA', timestamp=EARLY, iterations_per_sec=1.0),
        make_record(machine='MachineA', timestamp=LATE, iterations_per_sec=2.0),
        make_record(machine='MachineB', timestamp=EARLY, iterations_per_sec=3.0),
    ]
    first = select_latest_per_key(records)
    again = select_latest_per_key([entry.record for entry in first.values()])
    assert again == first


def test_missing_pairs_are_absent():
    records = [
        make_record(machine='MachineA', test='Sort_TopN', rows_per_sec=10.0),
        make_record(machine='MachineB', test='Hash_Aggregate', rows_per_sec=20.0),
    ]
    entries = select_latest_per_key(records)
    assert set(entries) == {('Sort_TopN', 'MachineA'), ('Hash_Aggregate', 'MachineB')}


@pytest.mark.parametrize("kwargs,expected", [
    ({'iterations_per_sec': 5.0, 'rows_per_sec': 6.0, 'throughput_mbps': 7.0}, IterationsPerSec(5.0)),
    ({'rows_per_sec': 6.0, 'throughput_mbps': 7.0}, RowsPerSec(6.0)),
    ({'throughput_mbps': 7.0}, ThroughputMBps(7.0)),
    ({'sql_elapsed_ms': 1500}, ElapsedMsFallback(1500.0)),
])
def test_canonical_metric_precedence(kwargs, expected):
    assert pick_canonical_metric(make_record(**kwargs)) == expected


def test_zero_rate_is_still_a_rate():
    assert pick_canonical_metric(make_record(iterations_per_sec=0.0)) == IterationsPerSec(0.0)


def test_ordering_helpers():
    records = [
        make_record(machine='Zeta', test='CPU_Integer_SingleThread'),
        make_record(machine='Alpha', test='Hash_Aggregate'),
        make_record(machine='Alpha', test='CPU_Integer_SingleThread'),
    ]
    assert ordered_test_names(records) == ['CPU_Integer_SingleThread', 'Hash_Aggregate']
    assert ordered_machines(records) == ['Alpha', 'Zeta']


def test_load_directory_concatenates_files(tmp_path):
    write_records([make_record(machine='MachineA')],
                  tmp_path / 'SqlCpuBenchmark_MachineA_20260301_080000.csv')
    write_records([make_record(machine='MachineB'), make_record(machine='MachineB')],
                  tmp_path / 'SqlCpuBenchmark_MachineB_20260301_080000.csv')
    (tmp_path / 'notes.csv').write_text('not a result file')

    records = load_results(tmp_path)

    assert [r.machine_name for r in records] == ['MachineA', 'MachineB', 'MachineB']


def test_load_single_file(tmp_path):
    path = write_records([make_record()], tmp_path / 'anything.csv')
    assert len(load_results(path)) == 1


def test_empty_directory_has_no_results(tmp_path):
    with pytest.raises(NoResultsError) as excinfo:
        load_results(tmp_path)
    assert 'No results found' in str(excinfo.value)


def test_missing_path_has_no_results(tmp_path):
    with pytest.raises(NoResultsError):
        load_results(tmp_path / 'missing')


def test_export_summary_json(tmp_path):
    records = [make_record(machine='MachineA', rows_per_sec=10.0, test='Hash_Aggregate')]
    output = tmp_path / 'summary.json'

    export_summary_json(records, str(output))

    summary = json.loads(output.read_text())
    assert summary['machines'] == ['MachineA']
    assert summary['entries'][0]['metric'] == 'RowsPerSec'
    assert summary['entries'][0]['value'] == 10.0


def test_main_on_empty_directory(tmp_path):
    assert main(['--input', str(tmp_path), '--output', str(tmp_path / 'summary.json')]) == 1
