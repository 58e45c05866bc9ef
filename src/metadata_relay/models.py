"""
Pydantic models for projects, tokens and marketplace messages
"""

import json
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import normalize_felt


class Project(BaseModel):
    """A published edition with its own indexer"""
    id: str
    indexer_url: str
    world_address: Optional[str] = None
    ignored: bool = False
    published: bool = True


class Token(BaseModel):
    """A token as observed on a project indexer"""

    model_config = ConfigDict(populate_by_name=True)

    contract_address: str
    token_id: str
    metadata: Optional[str] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    project: Optional[str] = None

    @field_validator("contract_address", "token_id", mode="before")
    @classmethod
    def _felt_as_string(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return hex(v)
        return v

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_as_string(cls, v: Any) -> Any:
        # Some indexers hand back already-decoded metadata
        if isinstance(v, (dict, list)):
            return json.dumps(v, separators=(",", ":"))
        if v is not None and not isinstance(v, str):
            return str(v)
        return v

    @property
    def has_metadata(self) -> bool:
        return bool(self.metadata and self.metadata.strip())

    @property
    def key(self) -> str:
        """Normalized collection:token_id pair"""
        return f"{normalize_felt(self.contract_address)}:{normalize_felt(self.token_id)}"


class TokenPage(BaseModel):
    """One page of tokens and the cursor to the next one"""
    tokens: List[Token] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    limit: int = 0
    # Set when the page could not be decoded and the cursor was kept
    stalled: bool = False


class IntegrityMessage(BaseModel):
    """Content hash of a token's metadata"""
    identity: str
    collection: str
    token_id: str
    state: str


class MetadataMessage(BaseModel):
    """One trait/value pair of a token"""
    identity: str
    collection: str
    token_id: str
    index: int
    trait_type: str
    value: str


class SignedMessage(BaseModel):
    """Typed data as JSON plus its [r, s] signature"""
    message: str
    signature: List[str]

    def to_payload(self) -> dict:
        return {"message": self.message, "signature": self.signature}


class PublishResult(BaseModel):
    """Marketplace answer to a message submission"""
    ok: bool = True
    error: Optional[str] = None
    accepted: int = 0
