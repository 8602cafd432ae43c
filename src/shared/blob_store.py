import uuid
from abc import ABC, abstractmethod
from typing import Optional

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from src.shared.logging_utils import warning as log_warning
from src.specs.common.errors import ConfigurationError, RemoteStoreError
from src.specs.models.domain import AssetRef


class AssetStore(ABC):
    """Opaque media store: raw bytes in, a stable id + URL out."""

    @abstractmethod
    def upload(self, data: bytes, *, content_type: Optional[str] = None, owner_id: Optional[str] = None) -> AssetRef: ...

    @abstractmethod
    def delete(self, asset_id: str) -> None: ...


class BlobAssetStore(AssetStore):
    def __init__(self, service: BlobServiceClient, container: str = "brief-assets") -> None:
        self._container = service.get_container_client(container)
        self._ensured = False

    @classmethod
    def from_connection_string(cls, conn: Optional[str], container: str = "brief-assets") -> "BlobAssetStore":
        if not conn:
            raise ConfigurationError("PUBLIC_BLOB_CONNECTION_STRING is required for asset uploads")
        return cls(BlobServiceClient.from_connection_string(conn), container)

    def _ensure_container(self) -> None:
        if self._ensured:
            return
        try:
            self._container.create_container(public_access="blob")
        except ResourceExistsError:
            pass
        self._ensured = True

    def upload(self, data: bytes, *, content_type: Optional[str] = None, owner_id: Optional[str] = None) -> AssetRef:
        """Upload bytes under a fresh name and return its reference."""
        asset_id = f"{owner_id}/{uuid.uuid4().hex}" if owner_id else uuid.uuid4().hex
        kwargs = {}
        if content_type:
            kwargs["content_settings"] = ContentSettings(content_type=content_type)
        try:
            self._ensure_container()
            blob = self._container.get_blob_client(asset_id)
            blob.upload_blob(data, overwrite=True, **kwargs)
        except AzureError as exc:
            raise RemoteStoreError(f"Asset upload failed: {exc}", {"assetId": asset_id}) from exc
        return AssetRef(id=asset_id, url=blob.url)

    def delete(self, asset_id: str) -> None:
        try:
            self._container.delete_blob(asset_id)
        except ResourceNotFoundError:
            log_warning(None, "assets:delete_missing", assetId=asset_id)
        except AzureError as exc:
            raise RemoteStoreError(f"Asset delete failed: {exc}", {"assetId": asset_id}) from exc
