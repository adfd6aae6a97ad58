"""
Result file format: the only contract between the runner and the reporter.

One CSV row per (run, test). Absent metrics are written as empty fields and
read back as None, never as zero.
"""

import csv
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from . import RESULT_FILE_EXTENSION, RESULT_FILE_PREFIX
from .errors import ArtifactError, ResultFileError
from .models import TIMESTAMP_FORMAT, RunRecord

logger = logging.getLogger(__name__)

FILENAME_TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

# Column name -> RunRecord attribute, in file order
COLUMNS = [
    ('Timestamp', 'timestamp'),
    ('MachineName', 'machine_name'),
    ('CpuModel', 'cpu_model'),
    ('LogicalCPUs', 'logical_cpus'),
    ('PhysicalCores', 'physical_cores'),
    ('Sockets', 'sockets'),
    ('HyperthreadRatio', 'hyperthread_ratio'),
    ('NumaNodes', 'numa_nodes'),
    ('PhysicalMemoryMB', 'physical_memory_mb'),
    ('SqlVersion', 'sql_version'),
    ('SqlEdition', 'sql_edition'),
    ('MAXDOP', 'max_dop'),
    ('TestName', 'test_name'),
    ('Iterations', 'iterations'),
    ('RowCount', 'row_count'),
    ('SqlElapsedMs', 'sql_elapsed_ms'),
    ('ClientElapsedMs', 'client_elapsed_ms'),
    ('IterationsPerSec', 'iterations_per_sec'),
    ('RowsPerSec', 'rows_per_sec'),
    ('ThroughputMBps', 'throughput_mbps'),
    ('DurationSeconds', 'duration_seconds'),
]

HEADER = [name for name, _ in COLUMNS]

_INT_FIELDS = {
    'logical_cpus', 'physical_cores', 'sockets', 'hyperthread_ratio', 'numa_nodes',
    'physical_memory_mb', 'max_dop', 'sql_elapsed_ms', 'client_elapsed_ms',
    'duration_seconds',
}
_OPTIONAL_INT_FIELDS = {'iterations', 'row_count'}
_OPTIONAL_FLOAT_FIELDS = {'iterations_per_sec', 'rows_per_sec', 'throughput_mbps'}
_TEXT_FIELDS = {'machine_name', 'cpu_model', 'sql_version', 'sql_edition', 'test_name'}

_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


def sanitize_machine_name(machine_name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", machine_name) or "Unknown"


def result_filename(machine_name: str, when: datetime) -> str:
    """<prefix>_<machine>_<yyyyMMdd_HHmmss>.csv"""
    safe_name = sanitize_machine_name(machine_name)
    return f"{RESULT_FILE_PREFIX}_{safe_name}_{when.strftime(FILENAME_TIMESTAMP_FORMAT)}{RESULT_FILE_EXTENSION}"


def result_file_glob() -> str:
    return f"{RESULT_FILE_PREFIX}_*{RESULT_FILE_EXTENSION}"


def _format_value(attr: str, value) -> str:
    if value is None:
        return ""
    if attr == 'timestamp':
        return value.strftime(TIMESTAMP_FORMAT)
    if attr in _OPTIONAL_FLOAT_FIELDS:
        return f"{value:.2f}"
    return str(value)


def record_to_row(record: RunRecord) -> Dict[str, str]:
    return {column: _format_value(attr, getattr(record, attr)) for column, attr in COLUMNS}


def write_records(records: Iterable[RunRecord], filepath: Path) -> Path:
    """Write records to a new file. Existing files are never overwritten."""
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'x', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=HEADER)
            writer.writeheader()
            for record in records:
                writer.writerow(record_to_row(record))
    except FileExistsError as e:
        raise ArtifactError(f"Result file already exists: {filepath}") from e
    except OSError as e:
        raise ArtifactError(f"Cannot write result file {filepath}: {e}") from e

    logger.debug(f"Saved results to {filepath}")
    return filepath


def _parser_for(attr: str) -> Callable[[str], object]:
    if attr == 'timestamp':
        return lambda text: datetime.strptime(text, TIMESTAMP_FORMAT)
    if attr in _INT_FIELDS:
        return int
    if attr in _OPTIONAL_INT_FIELDS:
        return lambda text: int(text) if text != "" else None
    if attr in _OPTIONAL_FLOAT_FIELDS:
        return lambda text: float(text) if text != "" else None
    return str


def row_to_record(row: Dict[str, str], source: Optional[Path] = None, line: int = 0) -> RunRecord:
    values = {}
    for column, attr in COLUMNS:
        text = row.get(column)
        if text is None:
            raise ResultFileError(f"{source}:{line}: missing column {column}")
        try:
            values[attr] = _parser_for(attr)(text if attr in _TEXT_FIELDS else text.strip())
        except ValueError as e:
            raise ResultFileError(f"{source}:{line}: bad value for {column}: {text!r}") from e
    return RunRecord(**values)


def read_records(filepath: Path) -> List[RunRecord]:
    """Read every row of one result file."""
    try:
        # utf-8-sig also accepts files re-saved with a byte order mark
        with open(filepath, newline='', encoding='utf-8-sig') as f:
            reader = csv.DictReader(f)
            missing = [c for c in HEADER if c not in (reader.fieldnames or [])]
            if missing:
                raise ResultFileError(f"{filepath}: missing columns {missing}")
            return [row_to_record(row, filepath, line)
                    for line, row in enumerate(reader, start=2)]
    except (UnicodeDecodeError, csv.Error) as e:
        raise ResultFileError(f"{filepath}: not a readable result file: {e}") from e
    except OSError as e:
        raise ResultFileError(f"Cannot read result file {filepath}: {e}") from e
