"""Turn raw token metadata into attribute messages"""

import json
from typing import Any, Dict, List, Optional
from loguru import logger

from .models import MetadataMessage, Token

UNKNOWN_TRAIT = "unknown"


def stringify_value(value: Any) -> str:
    """Attribute values are published as text"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def trait_name(attr: Dict[str, Any]) -> str:
    """trait_type, then trait, then "unknown" """
    for field in ("trait_type", "trait"):
        name = attr.get(field)
        if name is not None and name != "":
            return stringify_value(name)
    return UNKNOWN_TRAIT


class MetadataTransformer:
    """Metadata is third-party input; anything unexpected yields no messages"""

    def parse(self, token: Token) -> Optional[Dict[str, Any]]:
        if not token.has_metadata:
            return None
        try:
            metadata = json.loads(token.metadata)
        except ValueError as e:
            logger.debug(f"[{token.project}] Unparsable metadata for {token.token_id}: {e}")
            return None
        if not isinstance(metadata, dict):
            return None
        return metadata

    def to_messages(self, token: Token, identity: str) -> List[MetadataMessage]:
        """One message per attribute entry, index = position in the array"""
        metadata = self.parse(token)
        if metadata is None:
            return []

        attributes = metadata.get("attributes")
        if not isinstance(attributes, list):
            return []

        messages = []
        for index, attr in enumerate(attributes):
            # Malformed entries keep their slot so indices stay stable
            if not isinstance(attr, dict):
                continue
            messages.append(MetadataMessage(
                identity=identity,
                collection=token.contract_address,
                token_id=token.token_id,
                index=index,
                trait_type=trait_name(attr),
                value=stringify_value(attr.get("value")),
            ))
        return messages
