"""
Walrus Storage
Content-addressed blob store: PUT bytes for N epochs, GET by blob id.
Any non-2xx response is a StorageError.
"""

import base64
import hashlib
import logging
from typing import Dict, Optional

import httpx

from infrastructure.config import WalrusConfig
from infrastructure.errors import StorageError

logger = logging.getLogger("Walrus")


def blob_id_from_response(result: Dict) -> str:
    """Blob id of a fresh upload, or of an identical blob already certified"""
    blob_id = ((result.get("newlyCreated") or {}).get("blobObject") or {}).get("blobId") \
        or (result.get("alreadyCertified") or {}).get("blobId")
    if not blob_id:
        raise StorageError(f"Walrus upload returned unexpected response: {str(result)[:300]}")
    return blob_id


class WalrusStorage:
    def __init__(self, config: WalrusConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def put(self, data: bytes, epochs: Optional[int] = None) -> str:
        epochs = epochs or self.config.epochs
        try:
            response = await self.client.put(
                f"{self.config.publisher_url}/v1/blobs",
                params={"epochs": epochs},
                content=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Walrus upload failed: {e}")

        if not response.is_success:
            raise StorageError(
                f"Walrus upload failed: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )

        try:
            result = response.json()
        except ValueError:
            raise StorageError(f"Walrus upload returned non-JSON body: {response.text[:200]}")

        blob_id = blob_id_from_response(result)
        logger.info(f"📤 Uploaded {len(data)} bytes to Walrus: {blob_id} ({epochs} epochs)")
        return blob_id

    async def get(self, blob_id: str) -> bytes:
        try:
            response = await self.client.get(
                f"{self.config.aggregator_url}/v1/blobs/{blob_id}",
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Walrus download failed: {e}")

        if not response.is_success:
            raise StorageError(
                f"Walrus download failed: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        return response.content

    async def close(self):
        await self.client.aclose()


class LocalBlobStore:
    """In-memory content-addressed store for offline runs and tests"""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    @staticmethod
    def address_of(data: bytes) -> str:
        digest = hashlib.sha256(data).digest()
        return base64.urlsafe_b64encode(digest).decode().rstrip("=")

    async def put(self, data: bytes, epochs: Optional[int] = None) -> str:
        blob_id = self.address_of(data)
        self.blobs[blob_id] = bytes(data)
        logger.info(f"📤 Stored {len(data)} bytes locally: {blob_id}")
        return blob_id

    async def get(self, blob_id: str) -> bytes:
        if blob_id not in self.blobs:
            raise StorageError(f"Blob {blob_id} not found", 404)
        return self.blobs[blob_id]

    async def close(self):
        pass
