"""Pydantic schemas for the certificate request API.

Byte fields (CSR, certificate, token, CA) travel as standard base64 strings.
"""

import base64
import binascii

from pydantic import BaseModel, Field, field_validator

from certissuer.domain.models import (
    CertificateRequest,
    CertificateRequestSpec,
    CertificateRequestStatus,
)


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(data: str) -> bytes:
    return base64.b64decode(data, validate=True)


def _check_base64(value: str) -> str:
    try:
        decode_bytes(value)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"not valid base64: {e}") from None
    return value


class CertificateRequestSpecSchema(BaseModel):
    """Client-owned part of a certificate request."""

    request: str = Field("", description="Base64-encoded PEM CSR")

    @field_validator("request")
    @classmethod
    def validate_request(cls, value: str) -> str:
        return _check_base64(value)


class CertificateRequestStatusSchema(BaseModel):
    """Controller-owned part of a certificate request."""

    phase: str = ""
    reason: str = ""
    message: str = ""
    certificate: str = Field("", description="Base64-encoded PEM certificate")
    token: str = Field("", description="Base64-encoded token")
    ca: str = Field("", description="Base64-encoded PEM CA certificate")

    @field_validator("certificate", "token", "ca")
    @classmethod
    def validate_bytes(cls, value: str) -> str:
        return _check_base64(value)


class CertificateRequestSchema(BaseModel):
    """A certificate request as exchanged over HTTP."""

    name: str = Field(..., min_length=1, max_length=253)
    spec: CertificateRequestSpecSchema = Field(default_factory=CertificateRequestSpecSchema)
    status: CertificateRequestStatusSchema = Field(
        default_factory=CertificateRequestStatusSchema
    )
    resource_version: str = ""

    @classmethod
    def from_domain(cls, request: CertificateRequest) -> "CertificateRequestSchema":
        return cls(
            name=request.name,
            spec=CertificateRequestSpecSchema(request=encode_bytes(request.spec.request)),
            status=CertificateRequestStatusSchema(
                phase=request.status.phase,
                reason=request.status.reason,
                message=request.status.message,
                certificate=encode_bytes(request.status.certificate),
                token=encode_bytes(request.status.token),
                ca=encode_bytes(request.status.ca),
            ),
            resource_version=request.resource_version,
        )

    def to_domain(self) -> CertificateRequest:
        return CertificateRequest(
            name=self.name,
            spec=CertificateRequestSpec(request=decode_bytes(self.spec.request)),
            status=CertificateRequestStatus(
                phase=self.status.phase,
                reason=self.status.reason,
                message=self.status.message,
                certificate=decode_bytes(self.status.certificate),
                token=decode_bytes(self.status.token),
                ca=decode_bytes(self.status.ca),
            ),
            resource_version=self.resource_version,
        )


class CertificateRequestListResponse(BaseModel):
    """Response model for listing certificate requests."""

    items: list[CertificateRequestSchema]
    total: int
