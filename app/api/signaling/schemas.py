"""Signaling payloads."""

from pydantic import BaseModel, Field

from app.schemas.media import DtlsParameters, MediaKind, RtpParameters, WireModel
from app.utils.app_errors import AppError


class ConnectTransportIn(WireModel):
    transport_id: str = Field(min_length=1)
    dtls_parameters: DtlsParameters


class ProduceIn(WireModel):
    transport_id: str = Field(min_length=1)
    kind: MediaKind
    rtp_parameters: RtpParameters


class ProduceOut(WireModel):
    id: str


class SignalingFailure(BaseModel):
    """Failure acknowledgement sent back to the peer."""

    error: str
    errcode: str
    erresid: str

    @classmethod
    def from_app_error(cls, exc: AppError) -> "SignalingFailure":
        return cls(error=exc.errmesg, errcode=exc.errcode, erresid=exc.erresid)


__all__ = ["ConnectTransportIn", "ProduceIn", "ProduceOut", "SignalingFailure"]
