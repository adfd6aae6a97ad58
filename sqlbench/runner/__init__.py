"""Benchmark runner: profiles, workloads and suite orchestration."""
