"""Prometheus exposition endpoint."""

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


def init_monitoring(app: Flask) -> None:
    """Expose the default Prometheus registry when ``MONITORING_ENABLED`` is set."""
    if not app.config.get("MONITORING_ENABLED", False):
        return

    endpoint = app.config.get("METRICS_ENDPOINT", "/metrics")

    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    app.add_url_rule(endpoint, endpoint="metrics", view_func=metrics)
    app.logger.info("Metrics endpoint registered", extra={"metrics_endpoint": endpoint})
