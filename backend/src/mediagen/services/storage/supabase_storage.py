"""Supabase Storage client for persisting generated artifacts."""

from typing import Optional

import httpx

from mediagen.services.exceptions import StorageError


class SupabaseStorageClient:
    """Object storage client using the Supabase Storage REST API."""

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        bucket: str = "generated-media",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize storage client.

        Args:
            supabase_url: Project base URL (from SUPABASE_URL env var)
            service_role_key: Service role key (from SUPABASE_SERVICE_ROLE_KEY env var)
            bucket: Public bucket holding generated media
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = supabase_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Upload bytes under `key` (overwriting) and return the public URL.

        Raises:
            StorageError: Any non-2xx response or transport failure
        """
        headers = {
            **self.headers,
            "Content-Type": content_type,
            "x-upsert": "true",
            "cache-control": "3600",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/storage/v1/object/{self.bucket}/{key}",
                    headers=headers,
                    content=data,
                )
        except httpx.TimeoutException as e:
            raise StorageError(f"Storage upload timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise StorageError(f"Storage upload network error: {e}") from e

        if response.status_code in (401, 403):
            raise StorageError(
                f"Storage upload unauthorized ({response.status_code}). "
                "Check SUPABASE_SERVICE_ROLE_KEY configuration."
            )
        if not response.is_success:
            raise StorageError(f"Storage upload error ({response.status_code}): {response.text}")

        return self.public_url(key)

    async def delete(self, key: str) -> None:
        """Remove an object.

        Raises:
            StorageError: Any non-2xx response or transport failure
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    "DELETE",
                    f"{self.base_url}/storage/v1/object/{self.bucket}",
                    headers=self.headers,
                    json={"prefixes": [key]},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage delete failed: {e}") from e

        if not response.is_success:
            raise StorageError(f"Storage delete error ({response.status_code}): {response.text}")

    def public_url(self, key: str) -> str:
        """Public URL of an object in the bucket."""
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"
