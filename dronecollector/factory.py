"""Factory creating the Drone receiver for traces, logs and metrics."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from dronecollector.config import (
    LOGS_STABILITY,
    METRICS_STABILITY,
    TRACES_STABILITY,
    TYPE,
    Config,
    ControllerConfig,
    create_default_config,
)
from dronecollector.handler import DroneClient
from dronecollector.metrics import Metrics
from dronecollector.receiver import DroneReceiver
from dronecollector.scraper import DroneScraper, ScrapeError
from dronecollector.sharedcomponent import SharedComponent, SharedComponents

_log = logging.getLogger(__name__)

# One webhook receiver serves every signal for a given configuration.
_receivers = SharedComponents()


def _no_database_driver(conn_string: str) -> Any:
    raise ConnectionError("no PostgreSQL driver configured")


def _setting(settings: Mapping[str, Any] | None, key: str, default: Any = None) -> Any:
    if not settings:
        return default
    return settings.get(key, default)


def _require_config(config: Any) -> Config:
    if not isinstance(config, Config):
        raise TypeError(f"expected a Config, got {type(config).__name__}")
    return config


class ScraperReceiver:
    """Runs a scraper on a schedule and passes its metrics to a consumer."""

    def __init__(
        self,
        scraper: DroneScraper,
        controller: ControllerConfig,
        consumer: Callable[[Metrics], Any],
        logger: logging.Logger | None = None,
    ) -> None:
        if controller.collection_interval.total_seconds() <= 0:
            raise ValueError("collection_interval must be a positive duration")
        if controller.initial_delay.total_seconds() < 0:
            raise ValueError("initial_delay must be a non-negative duration")
        self.scraper = scraper
        self.controller = controller
        self.consumer = consumer
        self._logger = logger or _log
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self, host: Any = None) -> None:
        """Start the scraper, then scrape periodically in the background."""
        self.scraper.start(host)
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="drone-scraper", daemon=True
        )
        self._thread.start()

    def shutdown(self) -> None:
        """Stop scraping and wait for the background thread."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        if self._stop.wait(self.controller.initial_delay.total_seconds()):
            return
        interval = self.controller.collection_interval.total_seconds()
        while True:
            self._scrape_once()
            if self._stop.wait(interval):
                return

    def _scrape_once(self) -> None:
        try:
            metrics = self.scraper.scrape()
        except ScrapeError as exc:
            self._logger.error("Error scraping metrics: %s", exc)
            metrics = exc.metrics
        except Exception:
            self._logger.exception("Error scraping metrics")
            return
        try:
            self.consumer(metrics)
        except Exception as exc:
            self._logger.error("Failed to consume metrics: %s", exc)


class ReceiverFactory:
    """Creates receivers of the dronereceiver type.

    connect opens a DB-API connection to the Drone database from a
    connection string; client, if given, is used to fetch step logs.
    """

    type = TYPE
    traces_stability = TRACES_STABILITY
    metrics_stability = METRICS_STABILITY
    logs_stability = LOGS_STABILITY

    def __init__(
        self,
        connect: Callable[[str], Any] | None = None,
        client: DroneClient | None = None,
    ) -> None:
        self.connect = connect or _no_database_driver
        self.client = client

    def create_default_config(self) -> Config:
        """Return the receiver's default configuration."""
        return create_default_config()

    def _shared_receiver(
        self, settings: Mapping[str, Any] | None, config: Config
    ) -> SharedComponent:
        logger = _setting(settings, "logger")
        return _receivers.get_or_add(
            id(config),
            lambda: DroneReceiver(config, client=self.client, logger=logger),
        )

    def create_traces_receiver(
        self,
        settings: Mapping[str, Any] | None,
        config: Config,
        consumer: Callable[..., Any],
    ) -> SharedComponent:
        """Return the shared webhook receiver, sending traces to consumer."""
        shared = self._shared_receiver(settings, _require_config(config))
        shared.unwrap().traces_consumer = consumer
        return shared

    def create_logs_receiver(
        self,
        settings: Mapping[str, Any] | None,
        config: Config,
        consumer: Callable[..., Any],
    ) -> SharedComponent:
        """Return the shared webhook receiver, sending logs to consumer."""
        shared = self._shared_receiver(settings, _require_config(config))
        shared.unwrap().logs_consumer = consumer
        return shared

    def create_metrics_receiver(
        self,
        settings: Mapping[str, Any] | None,
        config: Config,
        consumer: Callable[[Metrics], Any],
    ) -> ScraperReceiver:
        """Return a receiver that scrapes the Drone database for metrics."""
        config = _require_config(config)
        logger = _setting(settings, "logger")
        scraper = DroneScraper(
            config,
            self.connect,
            build_version=_setting(settings, "build_version", ""),
            logger=logger,
        )
        return ScraperReceiver(scraper, config.controller, consumer, logger)


def new_factory() -> ReceiverFactory:
    """Return a factory for the Drone receiver."""
    return ReceiverFactory()