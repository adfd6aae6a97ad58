#!/usr/bin/env python3
"""
SQL Server Benchmark Comparison Report Generator

Loads result files from one or more machines and renders a side-by-side
comparison: a hardware summary per machine, a comparison table with best and
worst highlighted per test, and two chart definitions (operations-style and
throughput-style tests).

Usage:
  python -m sqlbench.dashboard.report_generator --input results/ --output comparison.html
  python -m sqlbench.dashboard.report_generator --input results/ --output comparison --format both
"""

import html
import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import ArtifactError, BenchmarkError
from ..models import METRIC_PRECEDENCE, RunRecord
from .results_aggregator import (ComparisonEntry, EntryKey, load_results,
                                 ordered_machines, ordered_test_names,
                                 select_latest_per_key)

logger = logging.getLogger(__name__)

# Tests whose canonical metric is a data rate rather than an operation count
THROUGHPUT_TEST_PATTERNS = ('Compression', 'Memory_Scan', 'Memory_Bandwidth')

OPERATIONS_CHART = 'operations'
THROUGHPUT_CHART = 'throughput'

NOT_AVAILABLE = 'N/A'

MACHINE_COLORS = [
    '#2E86AB', '#A23B72', '#F18F01', '#C73E1D', '#3B1F2B',
    '#67B26F', '#9B59B6', '#1ABC9C', '#F5A623', '#666666',
]


def is_throughput_test(test_name: str) -> bool:
    return any(pattern in test_name for pattern in THROUGHPUT_TEST_PATTERNS)


@dataclass
class ComparisonRow:
    """One test across all machines."""
    test_name: str
    cells: Dict[str, Optional[ComparisonEntry]]
    best: Optional[str] = None
    worst: Optional[str] = None
    metric_label: str = ''


@dataclass
class ChartDefinition:
    title: str
    ylabel: str
    labels: List[str]
    datasets: List[Dict] = field(default_factory=list)

    def to_chartjs(self) -> Dict:
        return {
            'type': 'bar',
            'data': {'labels': self.labels, 'datasets': self.datasets},
            'options': {
                'responsive': True,
                'plugins': {'title': {'display': True, 'text': self.title}},
                'scales': {'y': {'beginAtZero': True,
                                 'title': {'display': True, 'text': self.ylabel}}},
            },
        }


@dataclass
class ComparisonReport:
    generated_at: str
    machines: List[str]
    hardware: Dict[str, RunRecord]
    rows: List[ComparisonRow]
    charts: Dict[str, ChartDefinition]

    def to_html(self, chart_images: Optional[Dict[str, str]] = None,
                output_file: Optional[str] = None) -> str:
        return generate_html(self, chart_images, output_file)

    def to_markdown(self) -> str:
        return generate_markdown(self)


def rank_row(row: ComparisonRow):
    """Mark best and worst machines for one test.

    Only entries carrying the highest-precedence metric kind present are
    ranked, so different units are never compared. Ties go to the
    lexicographically first machine name.
    """
    present = [entry for entry in row.cells.values() if entry is not None]
    if not present:
        return

    kinds = {type(entry.metric) for entry in present}
    kind = next(k for k in METRIC_PRECEDENCE if k in kinds)
    ranked = [entry for entry in present if type(entry.metric) is kind]
    row.metric_label = kind.label

    values = [entry.metric.value for entry in ranked]
    high, low = max(values), min(values)
    best_value, worst_value = (high, low) if kind.higher_is_better else (low, high)

    row.best = min(e.machine_name for e in ranked if e.metric.value == best_value)
    if high != low:
        row.worst = min(e.machine_name for e in ranked if e.metric.value == worst_value)


def _latest_per_machine(entries: Dict[EntryKey, ComparisonEntry]) -> Dict[str, RunRecord]:
    latest: Dict[str, RunRecord] = {}
    for entry in entries.values():
        current = latest.get(entry.machine_name)
        if current is None or entry.record.timestamp > current.timestamp:
            latest[entry.machine_name] = entry.record
    return latest


def _build_chart(title: str, ylabel: str, rows: List[ComparisonRow],
                 machines: List[str]) -> ChartDefinition:
    chart = ChartDefinition(title=title, ylabel=ylabel, labels=[row.test_name for row in rows])
    for index, machine in enumerate(machines):
        data = []
        for row in rows:
            entry = row.cells.get(machine)
            # Elapsed-time fallbacks are not rates and stay off the chart
            charted = entry is not None and entry.metric.higher_is_better
            data.append(entry.metric.value if charted else None)
        chart.datasets.append({
            'label': machine,
            'data': data,
            'backgroundColor': MACHINE_COLORS[index % len(MACHINE_COLORS)],
        })
    return chart


def render_report(entries: Dict[EntryKey, ComparisonEntry], test_names: List[str],
                  machines: List[str]) -> ComparisonReport:
    """Build the comparison table and chart datasets from selected entries."""
    rows = []
    for test_name in test_names:
        row = ComparisonRow(
            test_name=test_name,
            cells={machine: entries.get((test_name, machine)) for machine in machines},
        )
        rank_row(row)
        rows.append(row)

    operations = [row for row in rows if not is_throughput_test(row.test_name)]
    throughput = [row for row in rows if is_throughput_test(row.test_name)]

    return ComparisonReport(
        generated_at=datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        machines=list(machines),
        hardware=_latest_per_machine(entries),
        rows=rows,
        charts={
            OPERATIONS_CHART: _build_chart('Operations and Rows per Second', 'Rate (higher is better)',
                                           operations, machines),
            THROUGHPUT_CHART: _build_chart('Throughput', 'MB/sec', throughput, machines),
        },
    )


def build_report_from_path(path) -> ComparisonReport:
    """load → group → select → render for a file or directory."""
    records = load_results(path)
    entries = select_latest_per_key(records)
    return render_report(entries, ordered_test_names(records), ordered_machines(records))


# HTML Template for the comparison report
HTML_TEMPLATE = '''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>SQL Server Benchmark Comparison</title>
    <script src="https://cdn.jsdelivr.net/npm/chart.js"></script>
    <style>
        :root {
            --primary: #4A90D9;
            --danger: #D0021B;
            --success: #7ED321;
            --bg: #F5F7FA;
            --card-bg: #FFFFFF;
            --text: #333333;
            --text-muted: #666666;
            --border: #E1E4E8;
        }

        * {
            margin: 0;
            padding: 0;
            box-sizing: border-box;
        }

        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, sans-serif;
            background: var(--bg);
            color: var(--text);
            line-height: 1.6;
        }

        .container {
            max-width: 1400px;
            margin: 0 auto;
            padding: 20px;
        }

        header {
            background: linear-gradient(135deg, var(--primary), #2C3E50);
            color: white;
            padding: 40px 20px;
            margin-bottom: 30px;
        }

        header h1 {
            font-size: 2.5em;
            margin-bottom: 10px;
        }

        .section {
            background: var(--card-bg);
            border-radius: 12px;
            padding: 24px;
            margin-bottom: 24px;
            box-shadow: 0 2px 8px rgba(0,0,0,0.08);
            border: 1px solid var(--border);
        }

        .section h2 {
            margin-bottom: 20px;
            padding-bottom: 12px;
            border-bottom: 2px solid var(--primary);
        }

        table {
            width: 100%;
            border-collapse: collapse;
            margin: 20px 0;
        }

        th, td {
            padding: 10px 14px;
            text-align: left;
            border-bottom: 1px solid var(--border);
        }

        th {
            background: var(--bg);
            font-weight: 600;
        }

        td.best {
            background: rgba(126, 211, 33, 0.2);
            font-weight: 600;
        }

        td.worst {
            background: rgba(208, 2, 27, 0.12);
        }

        td.missing {
            color: var(--text-muted);
        }

        .charts-grid {
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(500px, 1fr));
            gap: 20px;
        }

        .chart-container img {
            max-width: 100%;
            height: auto;
        }

        footer {
            text-align: center;
            padding: 30px;
            color: var(--text-muted);
            font-size: 0.9em;
        }
    </style>
</head>
<body>
    <header>
        <div class="container">
            <h1>SQL Server Benchmark Comparison</h1>
            <p class="subtitle">{{machine_count}} machine(s), generated on {{generated_at}}</p>
        </div>
    </header>

    <div class="container">
        <div class="section">
            <h2>Hardware Summary</h2>
            <table>
                <thead>
                    <tr>{{hardware_header}}</tr>
                </thead>
                <tbody>
                    {{hardware_rows}}
                </tbody>
            </table>
        </div>

        <div class="section">
            <h2>Comparison</h2>
            <table>
                <thead>
                    <tr>{{comparison_header}}</tr>
                </thead>
                <tbody>
                    {{comparison_rows}}
                </tbody>
            </table>
        </div>

        <div class="section">
            <h2>Charts</h2>
            <div class="charts-grid">
                <div><canvas id="operationsChart"></canvas></div>
                <div><canvas id="throughputChart"></canvas></div>
                {{chart_images}}
            </div>
        </div>
    </div>

    <footer>
        <p>Generated by sqlbench</p>
    </footer>

    <script>
        const chartDefinitions = {{chart_json}};
        new Chart(document.getElementById('operationsChart'), chartDefinitions.operations);
        new Chart(document.getElementById('throughputChart'), chartDefinitions.throughput);
    </script>
</body>
</html>
'''

HARDWARE_FIELDS = [
    ('CPU Model', 'cpu_model'),
    ('Logical CPUs', 'logical_cpus'),
    ('Physical Cores', 'physical_cores'),
    ('Sockets', 'sockets'),
    ('Hyperthread Ratio', 'hyperthread_ratio'),
    ('NUMA Nodes', 'numa_nodes'),
    ('Memory (MB)', 'physical_memory_mb'),
    ('SQL Version', 'sql_version'),
    ('SQL Edition', 'sql_edition'),
    ('MAXDOP', 'max_dop'),
    ('Last Run', 'timestamp'),
]


def _hardware_value(record: Optional[RunRecord], attr: str) -> str:
    return str(getattr(record, attr)) if record is not None else NOT_AVAILABLE


def _cell_text(entry: Optional[ComparisonEntry]) -> str:
    return entry.metric.format() if entry is not None else NOT_AVAILABLE


def _cell_class(row: ComparisonRow, machine: str) -> str:
    if row.cells.get(machine) is None:
        return 'missing'
    if machine == row.best:
        return 'best'
    if machine == row.worst:
        return 'worst'
    return ''


def generate_html(report: ComparisonReport, chart_images: Optional[Dict[str, str]] = None,
                  output_file: Optional[str] = None) -> str:
    """Render the report as a single HTML document."""
    esc = html.escape
    machines = report.machines

    hardware_header = '<th>Machine</th>' + ''.join(f'<th>{esc(label)}</th>' for label, _ in HARDWARE_FIELDS)
    hardware_rows = ''
    for machine in machines:
        record = report.hardware.get(machine)
        cells = ''.join(f'<td>{esc(_hardware_value(record, attr))}</td>' for _, attr in HARDWARE_FIELDS)
        hardware_rows += f'<tr><td><strong>{esc(machine)}</strong></td>{cells}</tr>\n'

    comparison_header = '<th>Test</th><th>Metric</th>' + ''.join(f'<th>{esc(m)}</th>' for m in machines)
    comparison_rows = ''
    for row in report.rows:
        cells = ''
        for machine in machines:
            css = _cell_class(row, machine)
            cells += f'<td class="{css}">{esc(_cell_text(row.cells.get(machine)))}</td>'
        comparison_rows += (f'<tr><td>{esc(row.test_name)}</td>'
                            f'<td>{esc(row.metric_label)}</td>{cells}</tr>\n')

    images_html = ''
    for name, path in (chart_images or {}).items():
        # Relative path keeps the report portable alongside its charts
        src = os.path.relpath(path, os.path.dirname(os.path.abspath(output_file))) if output_file else path
        images_html += (f'<div class="chart-container">'
                        f'<img src="{esc(src)}" alt="{esc(name.replace("_", " ").title())}"></div>')

    chart_json = json.dumps({name: chart.to_chartjs() for name, chart in report.charts.items()})
    # Keep the embedded JSON from closing the script element
    chart_json = chart_json.replace('</', '<\\/')

    document = HTML_TEMPLATE
    document = document.replace('{{machine_count}}', str(len(machines)))
    document = document.replace('{{generated_at}}', esc(report.generated_at))
    document = document.replace('{{hardware_header}}', hardware_header)
    document = document.replace('{{hardware_rows}}', hardware_rows)
    document = document.replace('{{comparison_header}}', comparison_header)
    document = document.replace('{{comparison_rows}}', comparison_rows)
    document = document.replace('{{chart_images}}', images_html)
    document = document.replace('{{chart_json}}', chart_json)
    return document


def generate_markdown(report: ComparisonReport) -> str:
    """Render the report as Markdown. Best is bold, worst is italic."""
    machines = report.machines
    lines = [
        "# SQL Server Benchmark Comparison",
        "",
        f"*Generated on {report.generated_at}*",
        "",
        "## Hardware Summary",
        "",
        "| Machine | " + " | ".join(label for label, _ in HARDWARE_FIELDS) + " |",
        "|---------|" + "|".join("-------" for _ in HARDWARE_FIELDS) + "|",
    ]
    for machine in machines:
        record = report.hardware.get(machine)
        values = [_hardware_value(record, attr) for _, attr in HARDWARE_FIELDS]
        lines.append(f"| {machine} | " + " | ".join(values) + " |")

    lines.extend([
        "",
        "## Comparison",
        "",
        "| Test | Metric | " + " | ".join(machines) + " |",
        "|------|--------|" + "|".join("-------" for _ in machines) + "|",
    ])
    for row in report.rows:
        cells = []
        for machine in machines:
            text = _cell_text(row.cells.get(machine))
            if machine == row.best:
                text = f"**{text}**"
            elif machine == row.worst:
                text = f"*{text}*"
            cells.append(text)
        lines.append(f"| {row.test_name} | {row.metric_label} | " + " | ".join(cells) + " |")

    for name, chart in report.charts.items():
        lines.extend(["", f"## {chart.title} ({name})", ""])
        if not chart.labels:
            lines.append("*No tests in this category*")
            continue
        lines.append("| Machine | " + " | ".join(chart.labels) + " |")
        lines.append("|---------|" + "|".join("-------" for _ in chart.labels) + "|")
        for dataset in chart.datasets:
            values = [f"{v:,.2f}" if v is not None else NOT_AVAILABLE for v in dataset['data']]
            lines.append(f"| {dataset['label']} | " + " | ".join(values) + " |")

    lines.extend([
        "",
        "---",
        "",
        "*Report generated by sqlbench*",
    ])
    return "\n".join(lines)


def write_report(content: str, output_file: str) -> str:
    try:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(content)
    except OSError as e:
        raise ArtifactError(f"Cannot write report {output_file}: {e}") from e
    logger.info(f"Report generated: {output_file}")
    return output_file


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='Generate a cross-machine benchmark comparison report')
    parser.add_argument('--input', '-i', required=True,
                        help='Result file or directory containing result files')
    parser.add_argument('--output', '-o', default='comparison.html',
                        help='Output report file')
    parser.add_argument('--format', '-f', choices=['html', 'markdown', 'both'],
                        default='html', help='Output format')
    parser.add_argument('--charts-dir', '-c',
                        help='Also render PNG charts into this directory')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        report = build_report_from_path(args.input)

        chart_images = {}
        if args.charts_dir:
            from .chart_generator import ChartGenerator
            chart_images = ChartGenerator(args.charts_dir).generate_all_charts(report)

        if args.format in ['html', 'both']:
            output = args.output if args.output.endswith('.html') else args.output + '.html'
            write_report(report.to_html(chart_images, output), output)

        if args.format in ['markdown', 'both']:
            output = args.output.replace('.html', '.md') if args.output.endswith('.html') else args.output + '.md'
            write_report(report.to_markdown(), output)
    except BenchmarkError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
