#!/usr/bin/env python3
"""
SQL Server Benchmark Dashboard Web Server

A small Flask server that renders the comparison report over a results
directory. Results are re-read on every request so new runs show up without
a restart.
"""

import logging
import sys
from pathlib import Path

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS

from ..errors import BenchmarkError, NoResultsError
from ..results_file import record_to_row
from .report_generator import build_report_from_path
from .results_aggregator import load_results

logger = logging.getLogger(__name__)


def _entry_json(entry):
    return {
        'metric': type(entry.metric).__name__,
        'value': entry.metric.value,
        'unit': entry.metric.unit,
        'timestamp': entry.record.timestamp.isoformat(sep=' '),
    }


def create_app(results_dir: str = 'results', charts_dir: str = 'charts') -> Flask:
    """Create the Flask application."""
    app = Flask(__name__)
    CORS(app)

    results_path = Path(results_dir)
    charts_path = Path(charts_dir)

    @app.errorhandler(NoResultsError)
    def handle_no_results(error):
        return jsonify({'error': str(error)}), 404

    @app.errorhandler(BenchmarkError)
    def handle_benchmark_error(error):
        logger.error(str(error))
        return jsonify({'error': str(error)}), 500

    @app.route('/')
    def index():
        """Serve the comparison report."""
        report = build_report_from_path(results_path)
        return report.to_html()

    @app.route('/api/results')
    def api_results():
        """Return every loaded record as result-file rows."""
        records = load_results(results_path)
        return jsonify([record_to_row(record) for record in records])

    @app.route('/api/comparison')
    def api_comparison():
        """Return the comparison table and chart datasets."""
        report = build_report_from_path(results_path)
        return jsonify({
            'generated_at': report.generated_at,
            'machines': report.machines,
            'tests': [
                {
                    'test_name': row.test_name,
                    'metric': row.metric_label,
                    'best': row.best,
                    'worst': row.worst,
                    'results': {
                        machine: _entry_json(entry) if entry is not None else None
                        for machine, entry in row.cells.items()
                    },
                }
                for row in report.rows
            ],
            'charts': {name: chart.to_chartjs() for name, chart in report.charts.items()},
        })

    @app.route('/charts/<path:filename>')
    def serve_chart(filename):
        """Serve chart images."""
        return send_from_directory(str(charts_path.resolve()), filename)

    return app


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='SQL Server Benchmark Dashboard Server')
    parser.add_argument('--results-dir', '-r', default='results',
                        help='Directory containing result files')
    parser.add_argument('--charts-dir', default='charts',
                        help='Directory containing chart images')
    parser.add_argument('--port', '-p', type=int, default=5000,
                        help='Server port (default: 5000)')
    parser.add_argument('--host', default='127.0.0.1',
                        help='Server host (default: 127.0.0.1)')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode')

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    app = create_app(args.results_dir, args.charts_dir)

    print(f"Starting dashboard server at http://{args.host}:{args.port}")
    print(f"Results directory: {Path(args.results_dir).resolve()}")

    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


if __name__ == '__main__':
    sys.exit(main())
