"""codemie-sync - Session telemetry sync for CLI-driven coding agents.

Correlates a local CLI session with the external agent's own session log,
extracts usage deltas incrementally, stores them in an append-only log and
pushes them to the CodeMie analytics API on a background timer.
"""

__version__ = "0.3.0"
