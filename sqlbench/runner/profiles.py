"""
Hardware and software introspection of the target server.

Engine-level facts come from sys.dm_os_sys_info and sys.configurations.
The CPU model string and clock speed come from the Windows registry via
xp_instance_regread; that probe is allowed to fail (no permission, Linux
host) and is replaced with placeholders.
"""

import logging
from typing import Any, Dict

import pyodbc

from ..errors import ConnectivityError, ProbeError
from ..models import UNKNOWN, HardwareProfile, SoftwareProfile

logger = logging.getLogger(__name__)

SOFTWARE_SQL = """
SELECT
    CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)) AS version,
    CAST(SERVERPROPERTY('Edition') AS nvarchar(128)) AS edition,
    CAST(SERVERPROPERTY('EngineEdition') AS int) AS engine_edition,
    CAST(SERVERPROPERTY('ProductLevel') AS nvarchar(128)) AS product_level,
    CAST(ISNULL(SERVERPROPERTY('IsClustered'), 0) AS int) AS is_clustered,
    CAST(ISNULL(SERVERPROPERTY('IsHadrEnabled'), 0) AS int) AS is_hadr_enabled
"""

ENGINE_HARDWARE_SQL = """
SELECT
    CAST(SERVERPROPERTY('MachineName') AS nvarchar(256)) AS machine_name,
    si.cpu_count AS logical_cpus,
    si.hyperthread_ratio,
    si.socket_count AS sockets,
    si.cores_per_socket,
    si.numa_node_count AS numa_nodes,
    si.physical_memory_kb / 1024 AS physical_memory_mb
FROM sys.dm_os_sys_info AS si
"""

CONFIGURATION_SQL = """
SELECT name, CAST(value_in_use AS int) AS value
FROM sys.configurations
WHERE name IN (N'max degree of parallelism', N'cost threshold for parallelism')
"""

OS_CPU_PROBE_SQL = r"""
SET NOCOUNT ON;
DECLARE @cpu_name nvarchar(256), @cpu_mhz int;
EXEC master.dbo.xp_instance_regread
    N'HKEY_LOCAL_MACHINE', N'HARDWARE\DESCRIPTION\System\CentralProcessor\0',
    N'ProcessorNameString', @cpu_name OUTPUT;
EXEC master.dbo.xp_instance_regread
    N'HKEY_LOCAL_MACHINE', N'HARDWARE\DESCRIPTION\System\CentralProcessor\0',
    N'~MHz', @cpu_mhz OUTPUT;
SELECT LTRIM(RTRIM(@cpu_name)) AS cpu_model, @cpu_mhz AS cpu_clock_mhz;
"""


def collect_software_profile(conn) -> SoftwareProfile:
    """Query engine version and edition. Any failure here is fatal."""
    try:
        rows = conn.query(SOFTWARE_SQL)
    except pyodbc.Error as e:
        raise ConnectivityError(f"Cannot query server properties: {e}") from e
    if not rows:
        raise ConnectivityError("Server returned no version information")

    row = rows[0]
    return SoftwareProfile(
        version=row.get('version') or UNKNOWN,
        edition=row.get('edition') or UNKNOWN,
        engine_edition=int(row.get('engine_edition') or 0),
        product_level=row.get('product_level') or "",
        is_clustered=bool(row.get('is_clustered')),
        is_hadr_enabled=bool(row.get('is_hadr_enabled')),
    )


def probe_os_cpu(conn) -> Dict[str, Any]:
    """Read CPU model and clock speed from the OS. Raises ProbeError."""
    try:
        rows = conn.query(OS_CPU_PROBE_SQL)
    except pyodbc.Error as e:
        raise ProbeError(f"OS CPU probe failed: {e}") from e
    if not rows or not rows[0].get('cpu_model'):
        raise ProbeError("OS CPU probe returned no processor information")

    row = rows[0]
    return {
        'cpu_model': row['cpu_model'],
        'cpu_clock_mhz': int(row.get('cpu_clock_mhz') or 0),
    }


def _engine_facts(conn) -> Dict[str, Any]:
    try:
        rows = conn.query(ENGINE_HARDWARE_SQL)
        config_rows = conn.query(CONFIGURATION_SQL)
    except pyodbc.Error as e:
        raise ConnectivityError(f"Cannot query engine hardware information: {e}") from e
    if not rows:
        raise ConnectivityError("sys.dm_os_sys_info returned no rows")

    row = rows[0]
    logical = int(row.get('logical_cpus') or 0)
    ht_ratio = int(row.get('hyperthread_ratio') or 0)
    sockets = int(row.get('sockets') or 0)
    cores_per_socket = int(row.get('cores_per_socket') or 0)

    if sockets and cores_per_socket:
        physical = sockets * cores_per_socket
    elif ht_ratio:
        physical = max(1, logical // ht_ratio)
    else:
        physical = logical

    settings = {r['name']: int(r['value']) for r in config_rows}
    return {
        'machine_name': row.get('machine_name') or UNKNOWN,
        'logical_cpus': logical,
        'physical_cores': physical,
        'sockets': sockets,
        'hyperthread_ratio': ht_ratio,
        'numa_nodes': int(row.get('numa_nodes') or 0),
        'physical_memory_mb': int(row.get('physical_memory_mb') or 0),
        'max_dop': settings.get('max degree of parallelism', 0),
        'cost_threshold': settings.get('cost threshold for parallelism', 0),
    }


def collect_hardware_profile(conn) -> HardwareProfile:
    """Merge engine-reported facts with the OS probe; OS values win."""
    facts = _engine_facts(conn)

    try:
        facts.update(probe_os_cpu(conn))
    except ProbeError as e:
        logger.warning(f"{e}; using placeholder CPU model")
        facts.setdefault('cpu_model', UNKNOWN)
        facts.setdefault('cpu_clock_mhz', 0)

    return HardwareProfile(**facts)
