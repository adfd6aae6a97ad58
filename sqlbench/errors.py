"""Exception hierarchy for the benchmark runner and the comparison reporter."""


class BenchmarkError(Exception):
    """Base class for all toolkit errors reported to the operator."""


class ConnectivityError(BenchmarkError):
    """The target SQL Server could not be reached or queried."""


class ProbeError(BenchmarkError):
    """A secondary hardware probe failed; callers substitute placeholders."""


class WorkloadError(BenchmarkError):
    """A benchmark workload failed or timed out mid-suite."""

    def __init__(self, test_name: str, message: str):
        super().__init__(f"Workload {test_name} failed: {message}")
        self.test_name = test_name


class ArtifactError(BenchmarkError):
    """A result file or report could not be written or read."""


class NoResultsError(ArtifactError):
    """No result files matched the runner's naming convention."""


class ResultFileError(ArtifactError):
    """A result file is malformed."""
