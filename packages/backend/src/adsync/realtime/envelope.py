"""Broker message envelopes.

Learn: Workers publish free-form JSON. Only two things matter for routing:

- request_id (top level) — the crawl/AI job the event belongs to
- user_id (top level, or inside request_data for crawler task echoes)

Everything else passes through to the browser untouched, so the envelope
keeps the original text and forwards that, not a re-serialization.
Payloads that are not a JSON object become a RawEnvelope and get broadcast.
"""

from dataclasses import dataclass, field
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, PrivateAttr, ValidationError


def _str_or_none(value: Any) -> Optional[str]:
    # Numbers, nulls, objects in an identity field are treated as missing
    return value if isinstance(value, str) else None


def _dict_or_none(value: Any) -> Any:
    return value if isinstance(value, dict) else None


IdentityField = Annotated[Optional[str], BeforeValidator(_str_or_none)]


class RequestData(BaseModel):
    """Nested request echo carried by crawler task messages."""

    model_config = ConfigDict(extra="allow")

    user_id: IdentityField = None


class TypedEnvelope(BaseModel):
    """A JSON-object payload with its routing fields pulled out."""

    model_config = ConfigDict(extra="allow")

    request_id: IdentityField = None
    user_id: IdentityField = None
    request_data: Annotated[Optional[RequestData], BeforeValidator(_dict_or_none)] = None

    _text: str = PrivateAttr(default="")

    @property
    def text(self) -> str:
        """The payload exactly as the broker delivered it."""
        return self._text

    @property
    def job_id(self) -> Optional[str]:
        return self.request_id

    @property
    def target_user_id(self) -> Optional[str]:
        """user_id at the top level, else request_data.user_id."""
        if self.user_id is not None:
            return self.user_id
        if self.request_data is not None:
            return self.request_data.user_id
        return None


@dataclass(frozen=True)
class RawEnvelope:
    """A payload that could not be decoded as a JSON object."""

    body: bytes
    error: str = field(default="", compare=False)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


Envelope = Union[TypedEnvelope, RawEnvelope]


def parse_envelope(body: bytes) -> Envelope:
    """Decode a broker payload. Never raises."""
    try:
        envelope = TypedEnvelope.model_validate_json(body)
    except ValidationError as e:
        return RawEnvelope(body=body, error=e.errors()[0]["msg"])
    envelope._text = body.decode("utf-8", errors="replace")
    return envelope
