"""
Integrity hashing

Every pass publishes a content hash per token so the marketplace can tell
when a token's metadata drifted from what its attributes were derived from.
"""

from eth_utils import keccak, to_hex
from loguru import logger

from .clients.marketplace import INTEGRITY_MODEL, METADATA_INTEGRITY_SCHEMA, MarketplaceClient
from .errors import IntegrityError
from .models import IntegrityMessage, Token
from .signer import MessageSigner
from .utils import parse_felt


def content_hash(token: Token) -> str:
    """keccak(collection || token_id || keccak(metadata)) as 0x hex"""
    metadata_hash = keccak(text=token.metadata or "")
    data = (
        parse_felt(token.contract_address).to_bytes(32, "big")
        + parse_felt(token.token_id).to_bytes(32, "big")
        + metadata_hash
    )
    return to_hex(keccak(data))


class IntegrityPublisher:
    """Builds, signs and sends the integrity message of a token"""

    def __init__(self, identity: str, marketplace: MarketplaceClient, signer: MessageSigner):
        self.identity = identity
        self.marketplace = marketplace
        self.signer = signer

    def build(self, token: Token) -> IntegrityMessage:
        return IntegrityMessage(
            identity=self.identity,
            collection=token.contract_address,
            token_id=token.token_id,
            state=content_hash(token),
        )

    async def publish(self, token: Token) -> IntegrityMessage:
        """Send the integrity message; IntegrityError aborts the token"""
        try:
            message = self.build(token)
            typed_data = self.marketplace.generate_typed_data(
                INTEGRITY_MODEL, message.model_dump(), METADATA_INTEGRITY_SCHEMA
            )
            signed = await self.signer.sign(typed_data)
            result = await self.marketplace.send_signed_message(signed)
        except Exception as e:
            raise IntegrityError(
                f"Integrity for {token.contract_address}:{token.token_id} not sent: {e}",
                project=token.project,
            ) from e

        if not result.ok:
            raise IntegrityError(
                f"Integrity for {token.key} rejected: {result.error}", project=token.project
            )
        logger.debug(f"[{token.project}] Integrity {message.state} sent for {token.key}")
        return message
