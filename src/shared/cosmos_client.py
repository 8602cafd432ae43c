# Remote record store backed by Azure Cosmos DB

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError, ServiceRequestError, ServiceResponseError
from azure.cosmos import CosmosClient, exceptions
from azure.cosmos.container import ContainerProxy

from src.shared.logging_utils import debug as log_debug, info as log_info
from src.specs.common.errors import RemoteStoreError, TransientStoreConflict

# Timeout, precondition (etag) conflict, throttling, retry-with, unavailable
TRANSIENT_STATUS_CODES = frozenset({408, 412, 429, 449, 503})
# Connection-pool and prepared-statement contention surfaced only as text
TRANSIENT_MESSAGE_PATTERNS = ("prepared statement", "connection reset", "connection pool", "connection aborted")


class RemoteStore(ABC):
    """Durable, eventually consistent store for SyncRecord documents.

    Implementations raise TransientStoreConflict for the retryable contention
    class and RemoteStoreError for every other backend failure; no other
    exception type may escape.
    """

    @abstractmethod
    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        """Create or replace the document stored under ``key``."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the document for ``key`` or None when absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete ``key``; deleting an absent key is not an error."""

    @abstractmethod
    def list_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        """Return every document belonging to ``owner_id``."""


def classify_error(exc: Exception, operation: str, key: str) -> RemoteStoreError:
    """Translate an azure SDK exception into the store's typed error classes."""
    details = {"operation": operation, "key": key, "error": str(exc)}
    status = getattr(exc, "status_code", None)
    if status is not None:
        details["statusCode"] = status
    message = str(exc).lower()
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return TransientStoreConflict(f"Cosmos connection failure during {operation}", details)
    if status in TRANSIENT_STATUS_CODES or any(p in message for p in TRANSIENT_MESSAGE_PATTERNS):
        return TransientStoreConflict(f"Cosmos contention during {operation}", details)
    return RemoteStoreError(f"Cosmos {operation} failed", details)


class CosmosRemoteStore(RemoteStore):
    """One Cosmos document per record key; ``id`` is the key and the partition key."""

    def __init__(self, container: ContainerProxy) -> None:
        self._container = container

    @classmethod
    def from_connection_string(
        cls, connection_string: str, database_name: str, container_name: str
    ) -> "CosmosRemoteStore":
        client = CosmosClient.from_connection_string(connection_string)
        db = client.get_database_client(database_name)
        container = db.get_container_client(container_name)
        log_info(None, "cosmos:records:init", container=container_name)
        return cls(container)

    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        body = dict(document)
        body["id"] = key
        try:
            self._container.upsert_item(body=body)
            log_debug(document.get("ownerId"), "cosmos:records:upsert", key=key)
        except AzureError as exc:
            raise classify_error(exc, "upsert", key) from exc

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            item = self._container.read_item(item=key, partition_key=key)
        except exceptions.CosmosResourceNotFoundError:
            return None
        except AzureError as exc:
            raise classify_error(exc, "read", key) from exc
        return {k: v for k, v in item.items() if not k.startswith("_") and k != "id"}

    def delete(self, key: str) -> None:
        try:
            self._container.delete_item(item=key, partition_key=key)
        except exceptions.CosmosResourceNotFoundError:
            log_debug(None, "cosmos:records:delete_missing", key=key)
        except AzureError as exc:
            raise classify_error(exc, "delete", key) from exc

    def list_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        try:
            items = list(
                self._container.query_items(
                    query="SELECT * FROM c WHERE c.ownerId = @ownerId",
                    parameters=[{"name": "@ownerId", "value": owner_id}],
                    enable_cross_partition_query=True,
                )
            )
        except AzureError as exc:
            raise classify_error(exc, "query", owner_id) from exc
        return [{k: v for k, v in item.items() if not k.startswith("_") and k != "id"} for item in items]


def build_remote_store(
    conn: Optional[str], db_name: Optional[str], container_name: Optional[str]
) -> Optional[CosmosRemoteStore]:
    """Return a Cosmos-backed store or None if configuration is missing."""
    if not conn or not db_name or not container_name:
        return None
    return CosmosRemoteStore.from_connection_string(conn, db_name, container_name)
