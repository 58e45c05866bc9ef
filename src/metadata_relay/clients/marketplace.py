"""Marketplace indexer client: lookups, typed data and message submission"""

from typing import Any, Dict, List
from loguru import logger

from .base import BaseClient
from ..config import Config
from ..models import PublishResult, SignedMessage
from ..utils import encode_short_string, normalize_felt, parse_felt

ATTRIBUTE_MODEL = "MARKETPLACE-MetadataAttribute"
INTEGRITY_MODEL = "MARKETPLACE-MetadataAttributeIntegrity"

DOMAIN_NAME = "Marketplace"
DOMAIN_VERSION = "1"

METADATA_ATTRIBUTE_SCHEMA: List[Dict[str, str]] = [
    {"name": "identity", "type": "uint256"},
    {"name": "collection", "type": "uint256"},
    {"name": "token_id", "type": "uint256"},
    {"name": "index", "type": "uint128"},
    {"name": "trait_type", "type": "string"},
    {"name": "value", "type": "string"},
]

METADATA_INTEGRITY_SCHEMA: List[Dict[str, str]] = [
    {"name": "identity", "type": "uint256"},
    {"name": "collection", "type": "uint256"},
    {"name": "token_id", "type": "uint256"},
    {"name": "state", "type": "uint256"},
]

EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
]


class MarketplaceClient(BaseClient):
    """Client for the marketplace's own indexer"""

    def __init__(self, config: Config):
        super().__init__(
            base_url=config.marketplace_url,
            timeout=config.timeout,
            max_response_bytes=config.max_response_bytes,
        )
        self.config = config
        self.chain_id = encode_short_string(config.chain_id)

    async def query_existing_attribute(self, identity: str, collection: str, token_id: str) -> bool:
        """True when the marketplace already holds attributes for the token"""
        data = await self._request(
            "POST",
            "/entities",
            json_data={
                "model": ATTRIBUTE_MODEL,
                "keys": [normalize_felt(identity), normalize_felt(collection), normalize_felt(token_id)],
                "limit": 1,
            },
        )
        items = data.get("items", []) if isinstance(data, dict) else []
        return bool(items)

    def generate_typed_data(
        self,
        model_name: str,
        message: Dict[str, Any],
        schema: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        """
        Build a typed data document for model_name

        Integer fields are parsed from felts, string fields are kept as text.
        Raises ValueError when a field is missing or not a felt.
        """
        primary_type = model_name.split("-", 1)[-1]
        values: Dict[str, Any] = {}
        for member in schema:
            name, kind = member["name"], member["type"]
            if name not in message:
                raise ValueError(f"{model_name} message is missing {name!r}")
            raw = message[name]
            if kind.startswith("uint") or kind.startswith("int"):
                values[name] = parse_felt(raw)
            else:
                values[name] = "" if raw is None else str(raw)

        return {
            "types": {
                "EIP712Domain": EIP712_DOMAIN,
                primary_type: schema,
            },
            "primaryType": primary_type,
            "domain": {
                "name": DOMAIN_NAME,
                "version": DOMAIN_VERSION,
                "chainId": self.chain_id,
            },
            "message": values,
        }

    async def send_signed_message(self, message: SignedMessage) -> PublishResult:
        data = await self._request("POST", "/messages", json_data=message.to_payload())
        return self._result(data, 1)

    async def send_signed_message_batch(self, messages: List[SignedMessage]) -> PublishResult:
        data = await self._request(
            "POST",
            "/messages/batch",
            json_data={"messages": [m.to_payload() for m in messages]},
        )
        return self._result(data, len(messages))

    def _result(self, data: Any, count: int) -> PublishResult:
        if not isinstance(data, dict):
            return PublishResult(ok=False, error="Unexpected marketplace response")
        if data.get("error"):
            logger.debug(f"Marketplace rejected submission: {data['error']}")
            return PublishResult(ok=False, error=str(data["error"]))
        return PublishResult(ok=bool(data.get("ok", True)), accepted=count)
