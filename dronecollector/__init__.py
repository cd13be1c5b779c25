"""Telemetry for Drone CI: traces and logs from webhooks, metrics scraped from the database."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "factory",
    "handler",
    "metrics",
    "receiver",
    "scraper",
    "semconv",
    "sharedcomponent",
    "traceutils",
]