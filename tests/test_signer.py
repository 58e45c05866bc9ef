import asyncio
import json

import pytest

from metadata_relay.clients.marketplace import ATTRIBUTE_MODEL, METADATA_ATTRIBUTE_SCHEMA, MarketplaceClient
from metadata_relay.errors import ConfigError, SigningError
from metadata_relay.signer import MessageSigner

from conftest import IDENTITY, PRIVATE_KEY


def _typed_data(config, **overrides):
    message = dict(identity=IDENTITY, collection="0x123", token_id="0x1", index=0, trait_type="Eyes", value="Blue")
    message.update(overrides)
    return MarketplaceClient(config).generate_typed_data(ATTRIBUTE_MODEL, message, METADATA_ATTRIBUTE_SCHEMA)


def test_typed_data_shape(config):
    typed = _typed_data(config)

    assert typed["primaryType"] == "MetadataAttribute"
    assert typed["domain"]["chainId"] == 0x534E5F4D41494E
    assert typed["message"]["token_id"] == 1
    assert typed["message"]["trait_type"] == "Eyes"
    assert typed["types"]["MetadataAttribute"] == METADATA_ATTRIBUTE_SCHEMA


def test_typed_data_rejects_missing_fields(config):
    with pytest.raises(ValueError):
        MarketplaceClient(config).generate_typed_data(ATTRIBUTE_MODEL, {"identity": IDENTITY}, METADATA_ATTRIBUTE_SCHEMA)


def test_sign_returns_message_and_rs(config):
    signer = MessageSigner(PRIVATE_KEY)
    typed = _typed_data(config)

    signed = asyncio.run(signer.sign(typed))

    assert json.loads(signed.message) == typed
    assert len(signed.signature) == 2
    assert all(part.startswith("0x") for part in signed.signature)
    again = asyncio.run(signer.sign(typed))
    assert again.signature == signed.signature


def test_sign_failure_is_signing_error():
    signer = MessageSigner(PRIVATE_KEY)

    with pytest.raises(SigningError):
        asyncio.run(signer.sign({"domain": {}, "message": {}}))


def test_unusable_key_is_config_error():
    with pytest.raises(ConfigError):
        MessageSigner("0x0")
    with pytest.raises(ConfigError):
        MessageSigner("not-a-key")
