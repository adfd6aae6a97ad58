import json
from pathlib import Path

import pytest

from sqlbench.config import DRIVER_ENV, PASSWORD_ENV, RunConfig, load_config
from sqlbench.connection import DEFAULT_DRIVER, build_connection_string


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(PASSWORD_ENV, raising=False)
    monkeypatch.delenv(DRIVER_ENV, raising=False)


def test_defaults():
    config = load_config()
    assert config.server == 'localhost'
    assert config.database == 'tempdb'
    assert config.duration_seconds == 60
    assert config.output_dir == Path('results')
    assert config.driver == DEFAULT_DRIVER
    assert config.password is None
    assert config.features == set()


def test_file_then_overrides(tmp_path):
    config_file = tmp_path / 'bench.json'
    config_file.write_text(json.dumps({'server': 'sql01', 'duration_seconds': 30, 'enable_sort': True}))

    config = load_config(config_file, {'duration_seconds': 120, 'server': None, 'enable_index': True})

    assert config.server == 'sql01'
    assert config.duration_seconds == 120
    assert config.features == {'sort', 'index'}


def test_unknown_file_keys_rejected(tmp_path):
    config_file = tmp_path / 'bench.json'
    config_file.write_text(json.dumps({'sever': 'typo'}))
    with pytest.raises(ValueError):
        load_config(config_file)


def test_credentials_from_environment(monkeypatch):
    monkeypatch.setenv(PASSWORD_ENV, 's3cret')
    monkeypatch.setenv(DRIVER_ENV, 'ODBC Driver 17 for SQL Server')

    config = load_config(overrides={'username': 'bench'})

    assert config.password == 's3cret'
    assert config.driver == 'ODBC Driver 17 for SQL Server'


def test_duration_must_be_positive():
    with pytest.raises(ValueError):
        RunConfig(duration_seconds=0)


def test_output_dir_coerced_to_path():
    assert RunConfig(output_dir='out').output_dir == Path('out')


def test_integrated_connection_string():
    conn_str = build_connection_string('sql01', 'tempdb', DEFAULT_DRIVER)
    assert 'Trusted_Connection=yes' in conn_str
    assert 'SERVER=sql01' in conn_str


def test_sql_login_connection_string():
    conn_str = build_connection_string('sql01', 'tempdb', DEFAULT_DRIVER, 'bench', 'pw')
    assert 'UID=bench' in conn_str
    assert 'PWD=pw' in conn_str
    assert 'Trusted_Connection' not in conn_str


@pytest.mark.parametrize("duration", [45.5, True, '60'])
def test_duration_must_be_an_integer(duration):
    with pytest.raises(ValueError):
        RunConfig(duration_seconds=duration)


def test_fractional_duration_in_file_rejected(tmp_path):
    config_file = tmp_path / 'bench.json'
    config_file.write_text(json.dumps({'duration_seconds': 45.5}))
    with pytest.raises(ValueError):
        load_config(config_file)
