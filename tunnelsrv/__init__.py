"""Server-side components for a reverse tunnel: ports, visitor listeners, controls, metrics and dashboard data."""

__version__ = "0.1.0"