"""Document store client abstraction module.

All HTTP access to the Elasticsearch-compatible clusters is isolated here.
No other module imports requests.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from config import Config, SampleConnectionConfig, StoreConnectionConfig

logger = logging.getLogger(__name__)


class MeasurementError(Exception):
    """Raised when the size of the sampled index cannot be determined."""
    pass


class PersistenceError(Exception):
    """Raised when the percentage document cannot be written."""
    pass


@dataclass(frozen=True)
class PercentDocument:
    """Body of the document read by the writers to decide what to keep.

    percent is expressed on a 0-100 scale.
    """
    percent: float
    target: str
    updated_at_epoch_ms: int

    def to_source(self) -> Dict[str, Any]:
        return {
            "percent": self.percent,
            "index": self.target,
            "updated": self.updated_at_epoch_ms,
        }


def build_session(
    username: Optional[str] = None, password: Optional[str] = None
) -> requests.Session:
    """Construct a session with JSON headers and optional basic auth.

    Args:
        username: Basic auth username
        password: Basic auth password

    Returns:
        requests.Session: Configured session
    """
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    if username:
        session.auth = (username, password or "")
    return session


class ElasticsearchMeasurementSource:
    """Measures the on-disk size of an index through the _cat API."""

    def __init__(
        self,
        connection: SampleConnectionConfig,
        timeout_seconds: float,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = connection.url
        self._timeout = timeout_seconds
        self._session = session or build_session(
            connection.username, connection.password
        )

    def ping(self) -> Dict[str, Any]:
        """Fetch cluster info, raising requests exceptions on failure."""
        response = self._session.get(f"{self._url}/", timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def size(self, target_id: str) -> int:
        """Return the store size of an index in bytes.

        Args:
            target_id: Index name

        Returns:
            Size in bytes

        Raises:
            MeasurementError: On transport errors, timeouts, or a response
                without a usable store.size
        """
        try:
            response = self._session.get(
                f"{self._url}/_cat/indices/{target_id}",
                params={"bytes": "b", "format": "json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            rows = response.json()
        except requests.RequestException as e:
            raise MeasurementError(f"Request for size of {target_id} failed: {e}") from e
        except ValueError as e:
            raise MeasurementError(f"Invalid JSON for size of {target_id}: {e}") from e

        if not isinstance(rows, list) or not rows:
            raise MeasurementError(f"No index information returned for {target_id}")
        if not isinstance(rows[0], dict):
            raise MeasurementError(
                f"Unexpected index information for {target_id}: {rows[0]!r}"
            )

        size_str = rows[0].get("store.size")
        if size_str is None:
            raise MeasurementError(f"store.size is undefined for {target_id}")

        try:
            return int(size_str)
        except (TypeError, ValueError) as e:
            raise MeasurementError(
                f"store.size for {target_id} is not an integer: {size_str!r}"
            ) from e


class ElasticsearchPercentageStore:
    """Upserts the percentage document with partial-document updates."""

    def __init__(
        self,
        connection: StoreConnectionConfig,
        timeout_seconds: float,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = connection.url
        self._index = connection.index
        self._timeout = timeout_seconds
        self._session = session or build_session(
            connection.username, connection.password
        )

    def upsert(self, document_id: str, document: PercentDocument) -> None:
        """Create or update the document with the given id.

        Args:
            document_id: Document ID
            document: Fields to merge into the document

        Raises:
            PersistenceError: On transport errors, timeouts, or error responses
        """
        body = {"doc": document.to_source(), "doc_as_upsert": True}
        try:
            response = self._session.post(
                f"{self._url}/{self._index}/_update/{document_id}",
                json=body,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise PersistenceError(
                f"Error updating document with id {document_id}: {e}"
            ) from e


def build_measurement_source(config: Config) -> ElasticsearchMeasurementSource:
    """Construct the measurement source for the sample connection."""
    return ElasticsearchMeasurementSource(
        config.connections.sample, config.connections.request_timeout_seconds
    )


def build_percentage_store(config: Config) -> ElasticsearchPercentageStore:
    """Construct the percentage store for the store connection."""
    return ElasticsearchPercentageStore(
        config.connections.store, config.connections.request_timeout_seconds
    )
