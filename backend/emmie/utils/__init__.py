"""
Utility modules for the application.
Provides telemetry, middleware, markdown helpers and provider payload access.

Version: 1.0.0
"""

from .markdown import extract_summary, strip_markdown
from .payloads import get_field, get_path
from .telemetry import metrics_collector, setup_telemetry

__all__ = [
    'extract_summary',
    'strip_markdown',
    'get_field',
    'get_path',
    'metrics_collector',
    'setup_telemetry',
]
