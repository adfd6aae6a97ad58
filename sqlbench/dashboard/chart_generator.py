#!/usr/bin/env python3
"""
SQL Server Benchmark Chart Generator

Renders the comparison report's chart datasets as PNG grouped bar charts:
- operations comparison (iterations/sec and rows/sec tests)
- throughput comparison (MB/sec tests)
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from ..errors import BenchmarkError
from .report_generator import (OPERATIONS_CHART, THROUGHPUT_CHART, ChartDefinition,
                               ComparisonReport, build_report_from_path)

logger = logging.getLogger(__name__)

sns.set_theme(style="whitegrid")


class ChartGenerator:
    """Generates benchmark comparison charts."""

    def __init__(self, output_dir: str = 'charts'):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def generate_grouped_bars(self, chart: ChartDefinition, filename: str) -> Optional[str]:
        """One group of bars per test, one bar per machine. Missing values are skipped."""
        if not chart.labels or not chart.datasets:
            return None

        fig, ax = plt.subplots(figsize=(max(10, len(chart.labels) * 1.4), 7))

        x = np.arange(len(chart.labels))
        width = 0.8 / len(chart.datasets)

        for index, dataset in enumerate(chart.datasets):
            offset = (index - (len(chart.datasets) - 1) / 2) * width
            positions = [pos + offset for pos, value in zip(x, dataset['data']) if value is not None]
            values = [value for value in dataset['data'] if value is not None]
            if not values:
                continue
            ax.bar(positions, values, width, label=dataset['label'],
                   color=dataset.get('backgroundColor'))

        ax.set_xlabel('Test')
        ax.set_ylabel(chart.ylabel)
        ax.set_title(chart.title)
        ax.set_xticks(x)
        ax.set_xticklabels([label[:28] for label in chart.labels], rotation=45, ha='right')
        ax.legend()

        plt.tight_layout()

        output_path = self.output_dir / filename
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)

        return str(output_path)

    def generate_all_charts(self, report: ComparisonReport) -> Dict[str, str]:
        """Generate every chart that has data."""
        charts = {}

        logger.info("Generating operations comparison chart...")
        result = self.generate_grouped_bars(report.charts[OPERATIONS_CHART], 'operations_comparison.png')
        if result:
            charts['operations_comparison'] = result

        logger.info("Generating throughput comparison chart...")
        result = self.generate_grouped_bars(report.charts[THROUGHPUT_CHART], 'throughput_comparison.png')
        if result:
            charts['throughput_comparison'] = result

        return charts


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='Generate benchmark comparison charts')
    parser.add_argument('--input', '-i', required=True,
                        help='Result file or directory containing result files')
    parser.add_argument('--output-dir', '-o', default='charts',
                        help='Output directory for charts')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        report = build_report_from_path(args.input)
    except BenchmarkError as e:
        logger.error(str(e))
        return 1

    charts = ChartGenerator(args.output_dir).generate_all_charts(report)
    print(f"\nGenerated {len(charts)} charts in {args.output_dir}/")
    for name, path in charts.items():
        print(f"  - {name}: {path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
