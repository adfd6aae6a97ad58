"""
Synthetic T-SQL workloads and the declarative workload table.

Every workload is a single batch that takes its size as the only parameter,
materializes whatever synthetic data it needs, times exactly one operation
with SYSDATETIME() and returns one row:

    elapsed_ms    server-measured milliseconds (authoritative)
    verification  units actually processed (loop iterations or rows read)
    megabytes     bytes processed / 1 MiB, MB/s workloads only

Temp tables are dropped before the final SELECT so the batch leaves nothing
behind once the result row has been read.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import pyodbc

from ..errors import WorkloadError
from ..models import BenchmarkResult, compute_rate

logger = logging.getLogger(__name__)

BASE_UNIT = 100000
MAX_CORE_SCALE = 8

# Upper bounds independent of scaling
ITERATION_CAP = 50_000_000
HASH_ROW_CAP = 5_000_000
PARALLEL_ROW_CAP = 10_000_000
SCAN_ROW_CAP = 10_000_000
COMPRESSION_CAP = 2_000_000
SORT_ROW_CAP = 2_000_000
INDEX_ROW_CAP = 2_000_000
INDEX_SEEK_CAP = 2_000_000

WARMUP_ITERATIONS = 10000

ITERATIONS = 'iterations'
ROWS = 'rows'

ITERATIONS_PER_SEC = 'iterations_per_sec'
ROWS_PER_SEC = 'rows_per_sec'
THROUGHPUT_MBPS = 'throughput_mbps'


@dataclass(frozen=True)
class ScaledSizes:
    single_thread: int
    multi_thread: int
    parallel_test: int


def compute_scaled_size(duration_seconds: float, physical_cores: int) -> ScaledSizes:
    """Derive workload sizes from the requested duration and core count.

    The multi-thread size stops growing at 8 cores so very large machines do
    not stretch the total run time.
    """
    scale = max(1.0, duration_seconds / 10.0)
    single = int(BASE_UNIT * scale)
    multi = single * min(max(physical_cores, 1), MAX_CORE_SCALE)
    return ScaledSizes(single_thread=single, multi_thread=multi, parallel_test=single // 2)


# --- T-SQL batches ---

_NUMBERS_CTE = """
WITH numbers AS (
    SELECT TOP (@rows) CAST(ROW_NUMBER() OVER (ORDER BY (SELECT NULL)) AS int) AS id
    FROM sys.all_columns AS a
    CROSS JOIN sys.all_columns AS b
    CROSS JOIN sys.all_columns AS c
)"""

INTEGER_SQL = """
SET NOCOUNT ON;
DECLARE @n bigint = ?, @i bigint = 0, @acc bigint = 0, @start datetime2(7), @elapsed int;
SET @start = SYSDATETIME();
WHILE @i < @n
BEGIN
    SET @acc = (@acc + @i * 7 + (@i % 13)) % 1000000007;
    SET @i += 1;
END;
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
SELECT @elapsed AS elapsed_ms, @i AS verification, @acc AS checksum;
"""

FLOAT_SQL = """
SET NOCOUNT ON;
DECLARE @n bigint = ?, @i bigint = 0, @x float, @acc float = 0, @start datetime2(7), @elapsed int;
SET @start = SYSDATETIME();
WHILE @i < @n
BEGIN
    SET @x = @i * 0.001;
    SET @acc += SIN(@x) * COS(@x) + SQRT(@x) + LOG(@x + 1.0);
    SET @i += 1;
END;
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
SELECT @elapsed AS elapsed_ms, @i AS verification, CAST(@acc AS bigint) AS checksum;
"""

STRING_SQL = """
SET NOCOUNT ON;
DECLARE @n bigint = ?, @i bigint = 0, @s nvarchar(200), @len bigint = 0, @start datetime2(7), @elapsed int;
SET @start = SYSDATETIME();
WHILE @i < @n
BEGIN
    SET @s = CONCAT(N'item', @i, N'-', REVERSE(CAST(@i AS nvarchar(20))));
    SET @len += LEN(@s + UPPER(@s) + REPLACE(@s, N'-', N'_'));
    SET @i += 1;
END;
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
SELECT @elapsed AS elapsed_ms, @i AS verification, @len AS checksum;
"""

HASH_AGGREGATE_SQL = """
SET NOCOUNT ON;
DECLARE @rows int = ?, @start datetime2(7), @elapsed int, @groups int, @processed bigint;
DROP TABLE IF EXISTS #bench_hash;
""" + _NUMBERS_CTE + """
SELECT id, id % 1000 AS grp, CAST(id % 997 AS bigint) * 3 AS val
INTO #bench_hash
FROM numbers;
SELECT @processed = COUNT_BIG(*) FROM #bench_hash;
SET @start = SYSDATETIME();
SELECT @groups = COUNT(*), @processed = SUM(cnt)
FROM (
    SELECT grp, COUNT_BIG(*) AS cnt, SUM(val) AS total
    FROM #bench_hash
    GROUP BY grp
) AS g
OPTION (HASH GROUP);
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_hash;
SELECT @elapsed AS elapsed_ms, @processed AS verification, @groups AS checksum;
"""

# MAXDOP cannot be parameterized; {maxdop} is formatted from a validated int
PARALLEL_QUERY_SQL = """
SET NOCOUNT ON;
DECLARE @rows int = ?, @start datetime2(7), @elapsed int, @groups int, @processed bigint;
DROP TABLE IF EXISTS #bench_parallel;
""" + _NUMBERS_CTE + """
SELECT id, id % 5000 AS grp, CAST(id AS bigint) * 13 AS val
INTO #bench_parallel
FROM numbers;
SELECT @processed = COUNT_BIG(*) FROM #bench_parallel;
SET @start = SYSDATETIME();
SELECT @groups = COUNT(*), @processed = SUM(cnt)
FROM (
    SELECT grp, COUNT_BIG(*) AS cnt, SUM(val % 7919) AS total, MAX(val) AS top_val
    FROM #bench_parallel
    GROUP BY grp
) AS g
OPTION (MAXDOP {maxdop});
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_parallel;
SELECT @elapsed AS elapsed_ms, @processed AS verification, @groups AS checksum;
"""

COMPRESSION_SQL = """
SET NOCOUNT ON;
DECLARE @n int = ?, @i int = 0, @payload nvarchar(max), @packed varbinary(max),
        @unpacked nvarchar(max), @bytes bigint = 0, @start datetime2(7), @elapsed int;
SET @payload = REPLICATE(CAST(N'SQL Server benchmark payload 0123456789 ' AS nvarchar(max)), 25);
SET @start = SYSDATETIME();
WHILE @i < @n
BEGIN
    SET @packed = COMPRESS(@payload + CAST(@i AS nvarchar(12)));
    SET @unpacked = CAST(DECOMPRESS(@packed) AS nvarchar(max));
    SET @bytes += DATALENGTH(@unpacked);
    SET @i += 1;
END;
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
SELECT @elapsed AS elapsed_ms, @i AS verification, @bytes / 1048576.0 AS megabytes;
"""

MEMORY_SCAN_SQL = """
SET NOCOUNT ON;
DECLARE @rows int = ?, @start datetime2(7), @elapsed int, @processed bigint,
        @total bigint, @megabytes float;
DROP TABLE IF EXISTS #bench_scan;
""" + _NUMBERS_CTE + """
SELECT id, CAST(id AS bigint) * 3 AS val, CAST(REPLICATE('x', 100) AS char(100)) AS pad
INTO #bench_scan
FROM numbers;
SELECT @megabytes = SUM(used_page_count) * 8 / 1024.0
FROM tempdb.sys.dm_db_partition_stats
WHERE object_id = OBJECT_ID(N'tempdb..#bench_scan');
SELECT @processed = COUNT_BIG(*) FROM #bench_scan;
SET @start = SYSDATETIME();
SELECT @processed = COUNT_BIG(*), @total = SUM(val + DATALENGTH(pad))
FROM #bench_scan
OPTION (MAXDOP 1);
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_scan;
SELECT @elapsed AS elapsed_ms, @processed AS verification, @megabytes AS megabytes, @total AS checksum;
"""

_SORT_SETUP = """
SET NOCOUNT ON;
DECLARE @rows int = ?, @start datetime2(7), @elapsed int, @processed bigint, @last int;
DROP TABLE IF EXISTS #bench_sort;
""" + _NUMBERS_CTE + """
SELECT id, id % 97 AS k1, (id * 31) % 1009 AS k2, CHECKSUM(id) AS k3
INTO #bench_sort
FROM numbers;
SELECT @processed = COUNT_BIG(*) FROM #bench_sort;
"""

SORT_SQL = _SORT_SETUP + """
SET @start = SYSDATETIME();
SELECT @processed = MAX(rn)
FROM (
    SELECT ROW_NUMBER() OVER (ORDER BY k1, k2 DESC, k3) AS rn
    FROM #bench_sort
) AS s
OPTION (MAXDOP 1);
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_sort;
SELECT @elapsed AS elapsed_ms, @processed AS verification;
"""

SORT_TOPN_SQL = _SORT_SETUP + """
SET @start = SYSDATETIME();
SELECT TOP (1000) @last = k3, @processed = COUNT_BIG(*) OVER ()
FROM #bench_sort
ORDER BY k2 DESC, k3
OPTION (MAXDOP 1);
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_sort;
SELECT @elapsed AS elapsed_ms, @processed AS verification, @last AS checksum;
"""

# Both index workloads warm the buffer cache on each index before timing
_INDEX_SETUP = """
SET NOCOUNT ON;
DECLARE @size int = ?, @rows int, @start datetime2(7), @elapsed int, @processed bigint, @v bigint;
SET @rows = {rows};
DROP TABLE IF EXISTS #bench_index;
CREATE TABLE #bench_index (
    id int NOT NULL PRIMARY KEY CLUSTERED,
    k1 int NOT NULL,
    val bigint NOT NULL
);
""" + _NUMBERS_CTE + """
INSERT INTO #bench_index (id, k1, val)
SELECT id, (id * 7) % 10007, CAST(id AS bigint) * 5
FROM numbers;
CREATE INDEX ix_bench_index_k1 ON #bench_index (k1) INCLUDE (val);
SELECT @processed = COUNT_BIG(*) FROM #bench_index WITH (INDEX(1));
SELECT @processed = COUNT_BIG(*) FROM #bench_index WITH (INDEX(ix_bench_index_k1));
"""

INDEX_SEEK_SQL = _INDEX_SETUP + """
DECLARE @i int = 0;
SET @start = SYSDATETIME();
WHILE @i < @size
BEGIN
    SELECT @v = val FROM #bench_index WHERE id = (CAST(@i AS bigint) * 7919) % @rows + 1;
    SET @i += 1;
END;
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_index;
SELECT @elapsed AS elapsed_ms, @i AS verification;
"""

INDEX_SCAN_SQL = _INDEX_SETUP + """
SET @start = SYSDATETIME();
SELECT @processed = COUNT_BIG(*), @v = SUM(val)
FROM #bench_index WITH (INDEX(ix_bench_index_k1))
WHERE k1 >= 0
OPTION (MAXDOP 1);
SET @elapsed = DATEDIFF(MILLISECOND, @start, SYSDATETIME());
DROP TABLE #bench_index;
SELECT @elapsed AS elapsed_ms, @processed AS verification, @v AS checksum;
"""


def _index_sql(template: str, sizes: ScaledSizes) -> str:
    return template.format(rows=min(sizes.multi_thread, INDEX_ROW_CAP))


# kind -> (SQL builder, unit of the size parameter, canonical rate field)
WORKLOAD_KINDS: Dict[str, tuple] = {
    'integer': (lambda spec, sizes: INTEGER_SQL, ITERATIONS, ITERATIONS_PER_SEC),
    'float': (lambda spec, sizes: FLOAT_SQL, ITERATIONS, ITERATIONS_PER_SEC),
    'string': (lambda spec, sizes: STRING_SQL, ITERATIONS, ITERATIONS_PER_SEC),
    'hash_aggregate': (lambda spec, sizes: HASH_AGGREGATE_SQL, ROWS, ROWS_PER_SEC),
    'parallel_query': (lambda spec, sizes: PARALLEL_QUERY_SQL.format(maxdop=int(spec.params['maxdop'])),
                       ROWS, ROWS_PER_SEC),
    'compression': (lambda spec, sizes: COMPRESSION_SQL, ITERATIONS, THROUGHPUT_MBPS),
    'memory_scan': (lambda spec, sizes: MEMORY_SCAN_SQL, ROWS, THROUGHPUT_MBPS),
    'sort': (lambda spec, sizes: SORT_SQL, ROWS, ROWS_PER_SEC),
    'sort_topn': (lambda spec, sizes: SORT_TOPN_SQL, ROWS, ROWS_PER_SEC),
    'index_seek': (lambda spec, sizes: _index_sql(INDEX_SEEK_SQL, sizes), ITERATIONS, ITERATIONS_PER_SEC),
    'index_scan': (lambda spec, sizes: _index_sql(INDEX_SCAN_SQL, sizes), ROWS, ROWS_PER_SEC),
}


@dataclass(frozen=True)
class WorkloadSpec:
    """One row of the workload table."""
    name: str
    kind: str
    size_fn: Callable[[ScaledSizes], int]
    enabled_by_default: bool = True
    feature: Optional[str] = None
    params: Dict[str, int] = field(default_factory=dict)

    def size(self, sizes: ScaledSizes) -> int:
        return self.size_fn(sizes)

    def sql(self, sizes: ScaledSizes) -> str:
        builder, _, _ = WORKLOAD_KINDS[self.kind]
        return builder(self, sizes)


WARMUP = WorkloadSpec('Warmup', 'integer', lambda s: WARMUP_ITERATIONS)

# Mandatory entries run first, in this order; the parallel query entries are
# generated per core count and run next; feature-gated batteries run last.
WORKLOADS: List[WorkloadSpec] = [
    WorkloadSpec('CPU_Integer_SingleThread', 'integer',
                 lambda s: min(s.single_thread, ITERATION_CAP)),
    WorkloadSpec('CPU_Float_SingleThread', 'float',
                 lambda s: min(s.single_thread, ITERATION_CAP)),
    WorkloadSpec('CPU_String_SingleThread', 'string',
                 lambda s: min(s.single_thread // 2, ITERATION_CAP)),
    WorkloadSpec('Hash_Aggregate', 'hash_aggregate',
                 lambda s: min(s.multi_thread, HASH_ROW_CAP)),
    WorkloadSpec('Compression_RoundTrip', 'compression',
                 lambda s: min(s.parallel_test, COMPRESSION_CAP)),
    WorkloadSpec('Memory_Scan', 'memory_scan',
                 lambda s: min(s.multi_thread * 2, SCAN_ROW_CAP)),
    WorkloadSpec('Sort_MultiKey', 'sort',
                 lambda s: min(s.multi_thread, SORT_ROW_CAP),
                 enabled_by_default=False, feature='sort'),
    WorkloadSpec('Sort_TopN', 'sort_topn',
                 lambda s: min(s.multi_thread, SORT_ROW_CAP),
                 enabled_by_default=False, feature='sort'),
    WorkloadSpec('Index_Seek', 'index_seek',
                 lambda s: min(s.single_thread, INDEX_SEEK_CAP),
                 enabled_by_default=False, feature='index'),
    WorkloadSpec('Index_Scan', 'index_scan',
                 lambda s: min(s.multi_thread, INDEX_ROW_CAP),
                 enabled_by_default=False, feature='index'),
]


def parallel_degrees(logical_cpus: int) -> List[int]:
    """MAXDOP values to test: 1, then 2/4/8 when available, 0 (unlimited) above 8."""
    degrees = [1]
    degrees.extend(d for d in (2, 4, 8) if logical_cpus >= d)
    if logical_cpus > 8:
        degrees.append(0)
    return degrees


def parallel_query_specs(logical_cpus: int) -> List[WorkloadSpec]:
    specs = []
    for degree in parallel_degrees(logical_cpus):
        suffix = str(degree) if degree else 'Unlimited'
        specs.append(WorkloadSpec(f'Parallel_Query_MAXDOP_{suffix}', 'parallel_query',
                                  lambda s: min(s.multi_thread * 2, PARALLEL_ROW_CAP),
                                  params={'maxdop': degree}))
    return specs


def build_workload_plan(logical_cpus: int, features: set,
                        workloads: Optional[List[WorkloadSpec]] = None) -> List[WorkloadSpec]:
    """Return the ordered list of workloads for one run."""
    table = WORKLOADS if workloads is None else workloads
    mandatory = [w for w in table if w.enabled_by_default]
    optional = [w for w in table if not w.enabled_by_default and w.feature in features]
    return mandatory + parallel_query_specs(logical_cpus) + optional


def run_workload(conn, spec: WorkloadSpec, sizes: ScaledSizes) -> BenchmarkResult:
    """Execute one workload once and derive its canonical metric."""
    _, unit, rate_field = WORKLOAD_KINDS[spec.kind]
    size = spec.size(sizes)
    sql = spec.sql(sizes)
    logger.debug(f"{spec.name}: size={size}\n{sql}")

    start = time.perf_counter()
    try:
        rows = conn.query(sql, [size])
    except pyodbc.Error as e:
        raise WorkloadError(spec.name, str(e)) from e
    client_elapsed_ms = int(round((time.perf_counter() - start) * 1000))

    if not rows:
        raise WorkloadError(spec.name, "no result row returned")
    row = rows[0]
    elapsed_ms = int(row['elapsed_ms'])
    verification = int(row['verification'])
    if verification != size:
        raise WorkloadError(spec.name, f"processed {verification} {unit}, expected {size}")

    if rate_field == THROUGHPUT_MBPS:
        amount = float(row.get('megabytes') or 0.0)
    else:
        amount = size

    rates = {rate_field: compute_rate(amount, elapsed_ms)}
    logger.debug(f"{spec.name}: verification={verification} checksum={row.get('checksum')}")

    return BenchmarkResult(
        test_name=spec.name,
        sql_elapsed_ms=elapsed_ms,
        client_elapsed_ms=client_elapsed_ms,
        iterations=size if unit == ITERATIONS else None,
        row_count=size if unit == ROWS else None,
        verification=verification,
        **rates,
    )
