"""HTTP implementation of the certificate request store.

Talks to the certificate request API, so the requester (and, if needed, the
controller) can run against a remote issuer.
"""

import logging
from typing import Any

import httpx

from certissuer.api.schemas import CertificateRequestListResponse, CertificateRequestSchema
from certissuer.domain.models import CertificateRequest
from certissuer.repository.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)

logger = logging.getLogger(__name__)

RESOURCE_PATH = "/apis/v1/certificates"
DEFAULT_TIMEOUT_SECONDS = 10.0


class CertificateRequestClient:
    """Certificate request store backed by the HTTP API.

    Either pass ``base_url`` to let the client own its connection pool, or an
    existing ``httpx.AsyncClient`` which the caller keeps ownership of.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if client is None and base_url is None:
            raise ValueError("either base_url or client is required")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "CertificateRequestClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create(self, request: CertificateRequest) -> CertificateRequest:
        response = await self._send(
            "POST", RESOURCE_PATH, json=CertificateRequestSchema.from_domain(request).model_dump()
        )
        if response.status_code == 409:
            raise AlreadyExistsError(f"certificate request {request.name} already exists")
        self._raise_for_status(response, request.name)
        return CertificateRequestSchema.model_validate(response.json()).to_domain()

    async def get(self, name: str) -> CertificateRequest:
        response = await self._send("GET", f"{RESOURCE_PATH}/{name}")
        self._raise_for_status(response, name)
        return CertificateRequestSchema.model_validate(response.json()).to_domain()

    async def list(self) -> list[CertificateRequest]:
        response = await self._send("GET", RESOURCE_PATH)
        self._raise_for_status(response, None)
        body = CertificateRequestListResponse.model_validate(response.json())
        return [item.to_domain() for item in body.items]

    async def update(self, request: CertificateRequest) -> CertificateRequest:
        response = await self._send(
            "PUT",
            f"{RESOURCE_PATH}/{request.name}",
            json=CertificateRequestSchema.from_domain(request).model_dump(),
        )
        if response.status_code == 409:
            raise ConflictError(
                f"certificate request {request.name} was modified "
                f"(resource version {request.resource_version} is stale)"
            )
        self._raise_for_status(response, request.name)
        return CertificateRequestSchema.model_validate(response.json()).to_domain()

    async def delete(self, name: str) -> None:
        response = await self._send("DELETE", f"{RESOURCE_PATH}/{name}")
        self._raise_for_status(response, name)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "certificate_api_request_failed",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise StoreError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, name: str | None) -> None:
        if response.status_code == 404:
            raise NotFoundError(f"certificate request {name} not found")
        if response.is_error:
            raise StoreError(
                f"{response.request.method} {response.request.url.path} "
                f"returned {response.status_code}: {response.text}"
            )
