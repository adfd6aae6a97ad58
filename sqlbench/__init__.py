"""
SQL Server CPU benchmark toolkit.

Runs a fixed battery of synthetic T-SQL workloads against a SQL Server
instance, persists one CSV row per test, and compares result files from
several machines in a side-by-side report.
"""

__version__ = "1.0.0"

# Result file naming shared by the runner and the reporter
RESULT_FILE_PREFIX = "SqlCpuBenchmark"
RESULT_FILE_EXTENSION = ".csv"
