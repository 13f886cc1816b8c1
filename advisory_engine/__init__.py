"""Advisory board report generation and quality-control pipeline."""

__version__ = "0.1.0"
