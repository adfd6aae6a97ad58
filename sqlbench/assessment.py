#!/usr/bin/env python3
"""
SQL Server Assessment Exporter

Runs a catalog of DMV diagnostic queries against a server and writes each
result set to its own CSV file, or runs one ad-hoc statement and writes its
result as CSV to a file or stdout.

Usage:
  python -m sqlbench.assessment --server=sql01 --queries=all --output-dir=./assessment
  python -m sqlbench.assessment --server=sql01 --queries=wait_stats,file_layout
  python -m sqlbench.assessment --server=sql01 --query="SELECT @@VERSION AS v" --output=-
"""

import argparse
import csv
import datetime
import logging
import sys
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, TextIO

import pyodbc

from .config import load_config
from .connection import SqlServerConnection
from .errors import ArtifactError, BenchmarkError
from .results_file import FILENAME_TIMESTAMP_FORMAT, sanitize_machine_name

logger = logging.getLogger(__name__)

ASSESSMENT_PREFIX = "SqlAssessment"

# Wait types that are idle or background noise
BENIGN_WAITS = [
    'BROKER_EVENTHANDLER', 'BROKER_RECEIVE_WAITFOR', 'BROKER_TASK_STOP',
    'BROKER_TO_FLUSH', 'BROKER_TRANSMITTER', 'CHECKPOINT_QUEUE', 'CHKPT',
    'CLR_AUTO_EVENT', 'CLR_MANUAL_EVENT', 'CLR_SEMAPHORE', 'CXCONSUMER',
    'DIRTY_PAGE_POLL', 'DISPATCHER_QUEUE_SEMAPHORE', 'EXECSYNC', 'FSAGENT',
    'FT_IFTS_SCHEDULER_IDLE_WAIT', 'FT_IFTSHC_MUTEX', 'KSOURCE_WAKEUP',
    'LAZYWRITER_SLEEP', 'LOGMGR_QUEUE', 'MEMORY_ALLOCATION_EXT',
    'ONDEMAND_TASK_QUEUE', 'PARALLEL_REDO_DRAIN_WORKER', 'PARALLEL_REDO_LOG_CACHE',
    'PARALLEL_REDO_TRAN_LIST', 'PARALLEL_REDO_WORKER_SYNC',
    'PARALLEL_REDO_WORKER_WAIT_WORK', 'PREEMPTIVE_OS_FLUSHFILEBUFFERS',
    'PREEMPTIVE_XE_GETTARGETSTATE', 'PWAIT_ALL_COMPONENTS_INITIALIZED',
    'PWAIT_DIRECTLOGCONSUMER_GETNEXT', 'QDS_PERSIST_TASK_MAIN_LOOP_SLEEP',
    'QDS_ASYNC_QUEUE', 'QDS_CLEANUP_STALE_QUERIES_TASK_MAIN_LOOP_SLEEP',
    'QDS_SHUTDOWN_QUEUE', 'REDO_THREAD_PENDING_WORK', 'REQUEST_FOR_DEADLOCK_SEARCH',
    'RESOURCE_QUEUE', 'SERVER_IDLE_CHECK', 'SLEEP_BPOOL_FLUSH', 'SLEEP_DBSTARTUP',
    'SLEEP_DCOMSTARTUP', 'SLEEP_MASTERDBREADY', 'SLEEP_MASTERMDREADY',
    'SLEEP_MASTERUPGRADED', 'SLEEP_MSDBSTARTUP', 'SLEEP_SYSTEMTASK', 'SLEEP_TASK',
    'SLEEP_TEMPDBSTARTUP', 'SNI_HTTP_ACCEPT', 'SOS_WORK_DISPATCHER',
    'SP_SERVER_DIAGNOSTICS_SLEEP', 'SQLTRACE_BUFFER_FLUSH',
    'SQLTRACE_INCREMENTAL_FLUSH_SLEEP', 'SQLTRACE_WAIT_ENTRIES', 'VDI_CLIENT_OTHER',
    'WAIT_FOR_RESULTS', 'WAITFOR', 'WAITFOR_TASKSHUTDOWN', 'WAIT_XTP_RECOVERY',
    'WAIT_XTP_HOST_WAIT', 'WAIT_XTP_OFFLINE_CKPT_NEW_LOG', 'WAIT_XTP_CKPT_CLOSE',
    'XE_DISPATCHER_JOIN', 'XE_DISPATCHER_WAIT', 'XE_TIMER_EVENT',
]

WAIT_STATS_SQL = """
WITH waits AS (
    SELECT
        wait_type,
        wait_time_ms / 1000.0 AS wait_s,
        (wait_time_ms - signal_wait_time_ms) / 1000.0 AS resource_s,
        signal_wait_time_ms / 1000.0 AS signal_s,
        waiting_tasks_count AS wait_count,
        100.0 * wait_time_ms / SUM(wait_time_ms) OVER () AS percentage,
        ROW_NUMBER() OVER (ORDER BY wait_time_ms DESC) AS row_num
    FROM sys.dm_os_wait_stats
    WHERE wait_type NOT IN ({benign})
      AND waiting_tasks_count > 0
)
SELECT
    MAX(w1.wait_type) AS WaitType,
    CAST(MAX(w1.wait_s) AS decimal(16, 2)) AS Wait_Secs,
    CAST(MAX(w1.resource_s) AS decimal(16, 2)) AS Resource_Secs,
    CAST(MAX(w1.signal_s) AS decimal(16, 2)) AS Signal_Secs,
    MAX(w1.wait_count) AS WaitCount,
    CAST(MAX(w1.percentage) AS decimal(5, 2)) AS PercentageOfWait,
    CAST(MAX(w1.wait_s) / MAX(w1.wait_count) AS decimal(16, 4)) AS AvgWait_S,
    CAST(MAX(w1.resource_s) / MAX(w1.wait_count) AS decimal(16, 4)) AS AvgRes_S,
    CAST(MAX(w1.signal_s) / MAX(w1.wait_count) AS decimal(16, 4)) AS AvgSig_S
FROM waits AS w1
INNER JOIN waits AS w2 ON w2.row_num <= w1.row_num
GROUP BY w1.row_num
HAVING SUM(w2.percentage) - MAX(w1.percentage) < 100
""".replace('{benign}', ', '.join(f"N'{w}'" for w in BENIGN_WAITS))

DATABASE_READS_WRITES_SQL = """
WITH reads_and_writes AS (
    SELECT db.name AS database_name,
        SUM(us.user_seeks + us.user_scans + us.user_lookups) AS reads,
        SUM(us.user_updates) AS writes,
        SUM(us.user_seeks + us.user_scans + us.user_lookups + us.user_updates) AS all_activity
    FROM sys.dm_db_index_usage_stats AS us
    INNER JOIN sys.databases AS db ON us.database_id = db.database_id
    GROUP BY db.name
)
SELECT database_name, reads,
    CAST(100.0 * reads / NULLIF(all_activity, 0) AS decimal(5, 2)) AS reads_percent,
    writes,
    CAST(100.0 * writes / NULLIF(all_activity, 0) AS decimal(5, 2)) AS writes_percent
FROM reads_and_writes
ORDER BY database_name
"""

PAGE_LIFE_EXPECTANCY_SQL = """
SELECT
    CASE instance_name WHEN '' THEN 'Overall' ELSE instance_name END AS NUMA_Node,
    cntr_value AS PageLifeExpectancy
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Page life expectancy'
"""

FILE_LAYOUT_SQL = """
SELECT
    db.name AS DB_Name,
    mfr.physical_name AS Data_File,
    mfl.physical_name AS Log_File,
    mfr.size * 8 / 1024 AS Data_File_Size_MiB,
    mfr.state_desc AS File_State,
    mfr.growth AS Growth
FROM sys.databases AS db
INNER JOIN sys.master_files AS mfr ON db.database_id = mfr.database_id AND mfr.type_desc = 'ROWS'
INNER JOIN sys.master_files AS mfl ON db.database_id = mfl.database_id AND mfl.type_desc = 'LOG'
WHERE db.database_id > 4
ORDER BY mfr.size DESC
"""

CPU_UTILIZATION_SQL = """
SELECT
    DATEADD(ms, -1 * (si.ms_ticks - x.[timestamp]), SYSDATETIMEOFFSET()) AS Event_Time,
    x.record_xml.value('(./Record/SchedulerMonitorEvent/SystemHealth/ProcessUtilization)[1]', 'int') AS CPU_Util_SQL,
    x.record_xml.value('(./Record/SchedulerMonitorEvent/SystemHealth/SystemIdle)[1]', 'int') AS CPU_Idle
FROM (
    SELECT [timestamp], CONVERT(xml, record) AS record_xml
    FROM sys.dm_os_ring_buffers
    WHERE ring_buffer_type = N'RING_BUFFER_SCHEDULER_MONITOR'
) AS x
CROSS APPLY sys.dm_os_sys_info AS si
ORDER BY Event_Time DESC
"""

DATABASE_IO_RATES_SQL = """
SET NOCOUNT ON;
DECLARE @uptime_s bigint;
SELECT @uptime_s = NULLIF(DATEDIFF(SECOND, sqlserver_start_time, SYSDATETIME()), 0)
FROM sys.dm_os_sys_info;
SELECT db.name AS DB_Name,
    SUM(io.num_of_reads) AS Total_Read_Ops,
    SUM(io.num_of_writes) AS Total_Write_Ops,
    SUM(io.num_of_reads) / @uptime_s AS Avg_Reads_Per_Sec,
    SUM(io.num_of_writes) / @uptime_s AS Avg_Writes_Per_Sec
FROM sys.dm_io_virtual_file_stats(NULL, NULL) AS io
INNER JOIN sys.databases AS db ON io.database_id = db.database_id
GROUP BY db.name
ORDER BY Total_Write_Ops DESC;
"""

ASSESSMENT_QUERIES = OrderedDict([
    ('wait_stats', WAIT_STATS_SQL),
    ('database_reads_writes', DATABASE_READS_WRITES_SQL),
    ('page_life_expectancy', PAGE_LIFE_EXPECTANCY_SQL),
    ('file_layout', FILE_LAYOUT_SQL),
    ('cpu_utilization', CPU_UTILIZATION_SQL),
    ('database_io_rates', DATABASE_IO_RATES_SQL),
])

MACHINE_NAME_SQL = "SELECT CAST(SERVERPROPERTY('MachineName') AS nvarchar(256)) AS machine_name"


def resolve_queries(names: str) -> List[str]:
    """Expand 'all' and validate a comma-separated list of query names."""
    requested = [n.strip() for n in names.split(',') if n.strip()]
    if 'all' in requested:
        return list(ASSESSMENT_QUERIES)
    unknown = [n for n in requested if n not in ASSESSMENT_QUERIES]
    if unknown:
        raise ValueError(f"Unknown assessment queries: {unknown}. Supported: {list(ASSESSMENT_QUERIES)}")
    return requested


def write_rows_csv(rows: List[Dict], out: TextIO, columns: Optional[List[str]] = None):
    columns = columns or (list(rows[0].keys()) if rows else [])
    writer = csv.DictWriter(out, fieldnames=columns)
    writer.writeheader()
    for row in rows:
        writer.writerow(row)


def assessment_filename(machine_name: str, query_name: str, when: datetime.datetime) -> str:
    """SqlAssessment_<machine>_<query>_<yyyyMMdd_HHmmss>.csv"""
    return f"{ASSESSMENT_PREFIX}_{sanitize_machine_name(machine_name)}_{query_name}_{when.strftime(FILENAME_TIMESTAMP_FORMAT)}.csv"


def run_assessment(conn, queries: List[str], output_dir: Path, machine_name: str,
                   when: Optional[datetime.datetime] = None) -> Dict[str, Path]:
    """Run each named query and write its result set to a CSV file.

    Exports are best-effort: a failing query is logged and skipped.
    """
    when = when or datetime.datetime.now()
    output_dir = Path(output_dir)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactError(f"Cannot create output directory {output_dir}: {e}") from e

    written = {}
    for name in queries:
        logger.info(f"Running assessment query {name}...")
        try:
            columns, rows = conn.query_with_columns(ASSESSMENT_QUERIES[name])
        except pyodbc.Error as e:
            logger.error(f"Assessment query {name} failed: {e}")
            continue

        if not rows:
            logger.info(f"No rows returned by {name}")

        filepath = output_dir / assessment_filename(machine_name, name, when)
        try:
            with open(filepath, 'w', newline='', encoding='utf-8') as f:
                write_rows_csv(rows, f, columns)
        except OSError as e:
            raise ArtifactError(f"Cannot write {filepath}: {e}") from e
        logger.info(f"Saved {len(rows)} rows to {filepath}")
        written[name] = filepath

    return written


def run_statement(conn, sql: str, out: TextIO) -> int:
    """Run one ad-hoc statement and write its result set as CSV."""
    rows = conn.query(sql)
    if not rows:
        logger.info("No rows returned by the query.")
        return 0
    write_rows_csv(rows, out)
    return len(rows)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="SQL Server Assessment Exporter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Available queries: {', '.join(ASSESSMENT_QUERIES)}"
    )
    parser.add_argument('--server', '-s', help="Target SQL Server")
    parser.add_argument('--database', '-d', default='master', help="Database (default: master)")
    parser.add_argument('--queries', '-q', default='all',
                        help="Assessment queries to run, comma-separated, or 'all'")
    parser.add_argument('--query', help="Ad-hoc SQL statement to run instead of the catalog")
    parser.add_argument('--output-dir', '-o', type=Path, default=Path('assessment'),
                        help="Output directory for assessment CSV files")
    parser.add_argument('--output', default='-',
                        help="Destination for --query results ('-' for stdout)")
    parser.add_argument('--driver', help="ODBC driver name")
    parser.add_argument('--user', '-u', dest='username',
                        help="SQL login (password from SQLBENCH_PASSWORD)")
    parser.add_argument('--verbose', '-v', action='store_true', help="Enable verbose logging")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        queries = [] if args.query else resolve_queries(args.queries)
    except ValueError as e:
        parser.error(str(e))

    config = load_config(overrides={'server': args.server, 'database': args.database,
                                    'driver': args.driver, 'username': args.username})
    connection = SqlServerConnection(
        server=config.server,
        database=config.database,
        driver=config.driver,
        username=config.username,
        password=config.password,
        login_timeout=config.login_timeout,
        query_timeout=config.query_timeout,
    )

    try:
        with connection as conn:
            if args.query:
                try:
                    if args.output == '-':
                        run_statement(conn, args.query, sys.stdout)
                    else:
                        with open(args.output, 'w', newline='', encoding='utf-8') as f:
                            run_statement(conn, args.query, f)
                except pyodbc.Error as e:
                    logger.error(f"Error during execution: {e}")
                    return 1
                except OSError as e:
                    raise ArtifactError(f"Cannot write {args.output}: {e}") from e
                return 0

            rows = conn.query(MACHINE_NAME_SQL)
            machine_name = rows[0]['machine_name'] if rows else config.server
            written = run_assessment(conn, queries, args.output_dir, machine_name)
    except pyodbc.Error as e:
        logger.error(f"Cannot query server: {e}")
        return 1
    except BenchmarkError as e:
        logger.error(str(e))
        return 1

    print(f"\nWrote {len(written)} of {len(queries)} assessment files to {args.output_dir}/")
    return 0 if len(written) == len(queries) else 1


if __name__ == '__main__':
    sys.exit(main())
