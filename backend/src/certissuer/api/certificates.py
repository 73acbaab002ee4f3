"""API endpoints for certificate request resources.

Exposes the declarative store over HTTP. Clients create requests with a CSR
in the spec; the controller writes the status.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from certissuer.api.schemas import CertificateRequestListResponse, CertificateRequestSchema
from certissuer.repository.store import (
    AlreadyExistsError,
    CertificateRequestStore,
    ConflictError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/apis/v1/certificates", tags=["certificates"])

# Global store instance (initialized on startup)
_store: CertificateRequestStore | None = None


def set_store(store: CertificateRequestStore) -> None:
    """Set the global certificate request store."""
    global _store
    _store = store


def get_store() -> CertificateRequestStore:
    """Get the global certificate request store."""
    if _store is None:
        raise RuntimeError("CertificateRequestStore not initialized")
    return _store


@router.post("", response_model=CertificateRequestSchema, status_code=201)
async def create_certificate_request(
    body: CertificateRequestSchema,
    store: CertificateRequestStore = Depends(get_store),
) -> CertificateRequestSchema:
    """Create a certificate request. An empty phase is defaulted to Unknown."""
    try:
        created = await store.create(body.to_domain())
    except AlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None

    logger.info(
        "certificate_request_created",
        extra={"request_name": created.name, "resource_version": created.resource_version},
    )
    return CertificateRequestSchema.from_domain(created)


@router.get("", response_model=CertificateRequestListResponse)
async def list_certificate_requests(
    store: CertificateRequestStore = Depends(get_store),
) -> CertificateRequestListResponse:
    """List all certificate requests."""
    items = await store.list()
    return CertificateRequestListResponse(
        items=[CertificateRequestSchema.from_domain(item) for item in items],
        total=len(items),
    )


@router.get("/{name}", response_model=CertificateRequestSchema)
async def get_certificate_request(
    name: str,
    store: CertificateRequestStore = Depends(get_store),
) -> CertificateRequestSchema:
    """Get a certificate request by name."""
    try:
        request = await store.get(name)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return CertificateRequestSchema.from_domain(request)


@router.put("/{name}", response_model=CertificateRequestSchema)
async def update_certificate_request(
    name: str,
    body: CertificateRequestSchema,
    store: CertificateRequestStore = Depends(get_store),
) -> CertificateRequestSchema:
    """Replace a certificate request (spec and status).

    ``resource_version`` must match the stored version.
    """
    if body.name != name:
        raise HTTPException(status_code=400, detail="name in body does not match path")

    try:
        updated = await store.update(body.to_domain())
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None
    return CertificateRequestSchema.from_domain(updated)


@router.delete("/{name}", status_code=204)
async def delete_certificate_request(
    name: str,
    store: CertificateRequestStore = Depends(get_store),
) -> Response:
    """Delete a certificate request."""
    try:
        await store.delete(name)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None

    logger.info("certificate_request_deleted", extra={"request_name": name})
    return Response(status_code=204)
