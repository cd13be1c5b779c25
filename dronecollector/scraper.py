"""Scrape build metrics out of the Drone database."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any, Callable

from dronecollector.config import Config, DBConfig
from dronecollector.metrics import (
    Metrics,
    MetricsBuilder,
    WorkflowItemStatus,
    timestamp_now,
)

DEFAULT_TIMEOUT = 120.0
DEFAULT_RETRY_INTERVAL = 1.0

RESTARTS_QUERY = (
    "SELECT COALESCE(SUM(occurrence_count - 1), 0) AS total_occurrence_count "
    "FROM ( SELECT count(*) AS occurrence_count FROM builds "
    "GROUP BY build_after, build_source HAVING COUNT(*) > 1) subquery"
)

_log = logging.getLogger(__name__)


class ScrapeError(Exception):
    """Raised when part of a scrape failed; carries what was collected."""

    def __init__(self, errors: Sequence[BaseException], metrics: Metrics) -> None:
        super().__init__("; ".join(str(error) for error in errors))
        self.errors = list(errors)
        self.metrics = metrics


class DatabaseTimeoutError(TimeoutError):
    """Raised when the database could not be reached in time."""


def connection_string(database: DBConfig) -> str:
    """Return the PostgreSQL connection URL for the Drone database."""
    return (
        f"postgres://{database.username}:{database.password}"
        f"@{database.host}:5432/{database.db}?sslmode=disable"
    )


def _quote(value: str) -> str:
    return value.replace("'", "''")


def _in_list(values: Sequence[str]) -> str:
    return "', '".join(_quote(value) for value in values)


def builds_query(repos: Mapping[str, Sequence[str]]) -> str:
    """Return the query counting builds by status, repo and source."""
    conditions = " ".join(
        f"WHEN repo_slug = '{_quote(slug)}' AND build_source IN ('{_in_list(sources)}') "
        "THEN build_source"
        for slug, sources in repos.items()
    )
    return f"""
        SELECT
            count(*),
            build_status,
            CASE
                WHEN repo_slug IN ('{_in_list(list(repos))}') THEN repo_slug
                ELSE 'other'
            END AS slug,
            CASE
                {conditions}
                ELSE 'other'
            END AS source
        FROM
            builds
        LEFT JOIN
            repos r
        ON
            build_repo_id = r.repo_id
        GROUP BY
            build_status,
            slug,
            source
    """


def repo_info_query(repos: Mapping[str, Sequence[str]]) -> str:
    """Return the query for the status of the latest finished build per repo and source."""
    conditions = " OR ".join(
        f"repo_slug = '{_quote(slug)}' AND build_source IN ('{_in_list(sources)}')"
        for slug, sources in repos.items()
    )
    return f"""
        SELECT build_status, r.repo_slug, build_source FROM builds
        LEFT JOIN
            repos r
        ON
            build_repo_id = r.repo_id
        WHERE build_id IN (
            SELECT MAX(build_id)
            FROM
                builds
            JOIN
                repos r
            ON
                build_repo_id = r.repo_id
            WHERE
                build_status NOT IN ('running','waiting_on_dependencies','pending')
                AND ({conditions})
            GROUP BY build_repo_id, build_source
        )
    """


def _require_values(row: Sequence[Any]) -> None:
    if any(value is None for value in row):
        raise ValueError(f"cannot scan NULL value in row {tuple(row)!r}")


class DroneScraper:
    """Periodically reads build statistics from the Drone database.

    connect is called with a connection string and must return a
    DB-API connection.
    """

    def __init__(
        self,
        config: Config,
        connect: Callable[[str], Any],
        build_version: str = "",
        logger: logging.Logger | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
    ) -> None:
        self.config = config
        self.metrics_builder = MetricsBuilder(config.metrics_builder, build_version)
        self._connect = connect
        self._logger = logger or _log
        self._timeout = timeout
        self._retry_interval = retry_interval
        self._connection: Any = None

    def start(self, host: Any = None) -> None:
        """Connect to the database, retrying until the timeout expires."""
        self._logger.info("Starting the drone scraper")
        deadline = time.monotonic() + self._timeout
        conn_string = connection_string(self.config.drone.database)
        while True:
            time.sleep(self._retry_interval)
            if time.monotonic() >= deadline:
                self._logger.error(
                    "db connection failed after %s second(s) timeout", self._timeout
                )
                raise DatabaseTimeoutError(
                    f"db connection failed after {self._timeout} second(s) timeout"
                )
            try:
                self._connection = self._connect(conn_string)
            except Exception as exc:
                self._logger.error("failed attempt to connect to db: %s", exc)
                continue
            self._logger.info("successfully connected to db!")
            return

    def scrape(self) -> Metrics:
        """Collect the current metrics.

        Raises ScrapeError, holding the metrics that could be collected,
        if any query failed.
        """
        if self._connection is None:
            raise RuntimeError("scraper has not been started")
        self._logger.debug("Scraping...")
        errors: list[BaseException] = []
        now = timestamp_now()
        self._scrape_builds(now, errors)
        self._scrape_restarted_builds(now, errors)
        self._scrape_info(now, errors)
        metrics = self.metrics_builder.emit()
        if errors:
            raise ScrapeError(errors, metrics)
        return metrics

    def _query(self, sql: str) -> list[Sequence[Any]]:
        cursor = self._connection.cursor()
        try:
            cursor.execute(sql)
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def _scrape_builds(self, now: int, errors: list[BaseException]) -> None:
        try:
            rows = self._query(builds_query(self.config.repos))
        except Exception as exc:
            errors.append(exc)
            rows = []

        values: dict[str, dict[str, dict[WorkflowItemStatus, int]]] = {}
        for row in rows:
            try:
                _require_values(row)
                count, status, slug, source = row
                count = int(count)
            except (ValueError, TypeError) as exc:
                errors.append(exc)
                continue
            by_status = values.setdefault(slug, {}).setdefault(source, {})
            try:
                by_status[WorkflowItemStatus(status)] = count
            except ValueError:
                # Statuses outside the known set are not reported.
                continue

        for slug, sources in values.items():
            for source, by_status in sources.items():
                for status in WorkflowItemStatus:
                    self.metrics_builder.record_builds_number_data_point(
                        now, by_status.get(status, 0), status, slug, source
                    )

    def _scrape_restarted_builds(self, now: int, errors: list[BaseException]) -> None:
        count = 0
        try:
            rows = self._query(RESTARTS_QUERY)
            if not rows:
                raise LookupError("no rows in result set")
            count = int(rows[0][0])
        except Exception as exc:
            errors.append(exc)
            count = 0
        self.metrics_builder.record_restarts_total_data_point(now, count)

    def _scrape_info(self, now: int, errors: list[BaseException]) -> None:
        try:
            rows = self._query(repo_info_query(self.config.repos))
        except Exception as exc:
            errors.append(exc)
            rows = []

        for row in rows:
            try:
                _require_values(row)
                status, slug, source = row
            except (ValueError, TypeError) as exc:
                errors.append(exc)
                continue
            try:
                status_value: WorkflowItemStatus | str = WorkflowItemStatus(status)
            except ValueError:
                status_value = ""
            self.metrics_builder.record_repo_info_data_point(
                now, 1, status_value, slug, source
            )