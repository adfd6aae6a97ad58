"""Comparison reporter: aggregation, report rendering, charts and the web dashboard."""
