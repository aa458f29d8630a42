"""
Report module: alert storage, alert evaluation and the HTTP API.

Usage:
    from report.store import AlertStore
    from report.alerts import AlertEvaluator
    from report.server import start_server
"""
