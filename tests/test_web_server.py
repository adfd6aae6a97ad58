import pytest

from sqlbench.dashboard.web_server import create_app
from sqlbench.results_file import write_records

from .conftest import make_record


@pytest.fixture
def results_dir(tmp_path):
    path = tmp_path / 'results'
    write_records([
        make_record(machine='MachineA', iterations_per_sec=500000.0),
        make_record(machine='MachineA', test='Memory_Scan', throughput_mbps=900.0),
    ], path / 'SqlCpuBenchmark_MachineA_20260301_120000.csv')
    write_records([
        make_record(machine='MachineB', iterations_per_sec=750000.0),
    ], path / 'SqlCpuBenchmark_MachineB_20260301_120000.csv')
    return path


@pytest.fixture
def client(results_dir, tmp_path):
    app = create_app(str(results_dir), str(tmp_path / 'charts'))
    app.config['TESTING'] = True
    return app.test_client()


def test_index_serves_report(client):
    response = client.get('/')
    assert response.status_code == 200
    assert b'MachineB' in response.data
    assert b'class="best"' in response.data


def test_api_results(client):
    rows = client.get('/api/results').get_json()
    assert len(rows) == 3
    assert rows[0]['MachineName'] == 'MachineA'
    assert rows[0]['IterationsPerSec'] == '500000.00'


def test_api_comparison(client):
    data = client.get('/api/comparison').get_json()

    assert data['machines'] == ['MachineA', 'MachineB']
    integer, scan = data['tests']
    assert integer['test_name'] == 'CPU_Integer_SingleThread'
    assert integer['best'] == 'MachineB'
    assert integer['worst'] == 'MachineA'
    assert integer['results']['MachineB']['value'] == 750000.0
    assert scan['results']['MachineB'] is None
    assert data['charts']['throughput']['data']['labels'] == ['Memory_Scan']


def test_no_results_is_not_found(tmp_path):
    empty = tmp_path / 'empty'
    empty.mkdir()
    client = create_app(str(empty)).test_client()

    response = client.get('/api/comparison')

    assert response.status_code == 404
    assert 'No results found' in response.get_json()['error']


def test_malformed_file_is_server_error(tmp_path):
    bad = tmp_path / 'bad'
    bad.mkdir()
    (bad / 'SqlCpuBenchmark_X_20260301_120000.csv').write_text('Timestamp\n2026\n')

    response = create_app(str(bad)).test_client().get('/api/results')

    assert response.status_code == 500
