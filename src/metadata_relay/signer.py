"""Typed data signing with the worker account"""

import json
from typing import Any, Dict
from eth_account import Account
from loguru import logger

from .errors import ConfigError, SigningError
from .models import SignedMessage
from .utils import parse_felt


class MessageSigner:
    """
    Signs typed data documents with the worker key.

    Signing keeps no state between calls, so concurrent callers share one
    instance without a lock.
    """

    def __init__(self, private_key: str, address: str = None):
        try:
            number = parse_felt(private_key)
            if number == 0:
                raise ValueError("key is zero")
            self._account = Account.from_key(number.to_bytes(32, "big"))
        except Exception as e:
            raise ConfigError(f"ACCOUNT_PRIVATE_KEY is not a usable key: {e}")
        self.address = address or self._account.address

    async def sign(self, typed_data: Dict[str, Any]) -> SignedMessage:
        """Sign typed data, SigningError if the account refuses"""
        try:
            message_types = {
                name: fields
                for name, fields in typed_data["types"].items()
                if name != "EIP712Domain"
            }
            signed = self._account.sign_typed_data(
                domain_data=typed_data["domain"],
                message_types=message_types,
                message_data=typed_data["message"],
            )
        except Exception as e:
            logger.debug(f"Signing failed for {typed_data.get('primaryType')}: {e}")
            raise SigningError(f"Cannot sign {typed_data.get('primaryType')}: {e}") from e

        return SignedMessage(
            message=json.dumps(typed_data, separators=(",", ":")),
            signature=[hex(signed.r), hex(signed.s)],
        )
