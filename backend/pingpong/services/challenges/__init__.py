"""Challenge domain services: response accumulation, lifecycle dispatch
and scoreboards.

This package holds the race-safe core that HTTP routes and socket
handlers call into. Store and notification gateway are passed in, so
nothing here depends on a running Flask app except ``store`` (SQL
backend) and ``runtime`` (app wiring).
"""
