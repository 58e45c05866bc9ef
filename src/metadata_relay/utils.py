"""Utility functions for felt handling and validation"""

import re
from typing import Optional, Union
from eth_utils import to_hex, to_int

U256_MAX = 2**256 - 1

_HEX_RE = re.compile(r'^0x[0-9a-fA-F]+$')
_DEC_RE = re.compile(r'^[0-9]+$')


def parse_felt(value: Union[str, int]) -> int:
    """
    Parse a hex (0x-prefixed) or decimal felt into an int

    Raises:
        ValueError: if the value is not a felt
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a felt: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if _HEX_RE.match(text):
            number = to_int(hexstr=text)
        elif _DEC_RE.match(text):
            number = int(text)
        else:
            raise ValueError(f"Not a felt: {value!r}")
    else:
        raise ValueError(f"Not a felt: {value!r}")

    if number < 0 or number > U256_MAX:
        raise ValueError(f"Felt out of range: {value!r}")
    return number


def normalize_felt(value: Union[str, int]) -> str:
    """Canonical lowercase 0x form without leading zeros"""
    return to_hex(parse_felt(value))


def validate_felt(value: Union[str, int]) -> bool:
    """True when value parses as a felt"""
    try:
        parse_felt(value)
        return True
    except ValueError:
        return False


def is_ack_sentinel(contract_address: Optional[str], token_id: Optional[str]) -> bool:
    """
    Indexers acknowledge a new subscription with a zero token update
    (contract 0x0 and token id of all zeros).
    """
    if contract_address is None or token_id is None:
        return False
    try:
        return parse_felt(contract_address) == 0 and parse_felt(token_id) == 0
    except ValueError:
        return False


def encode_short_string(text: str) -> int:
    """Encode an ASCII short string (at most 31 chars) as a felt"""
    if len(text) > 31:
        raise ValueError(f"Short string too long: {text!r}")
    try:
        data = text.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"Short string must be ASCII: {text!r}")
    return int.from_bytes(data, "big") if data else 0


def token_key(identity: str, collection: str, token_id: str) -> str:
    """Composite key identifying a token's published attributes"""
    return ":".join(normalize_felt(part) for part in (identity, collection, token_id))


def validate_url(url: str) -> bool:
    """
    Validate URL format

    Args:
        url: URL to validate

    Returns:
        True if valid, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()

    pattern = re.compile(
        r'^(?:https?|wss?)://'  # http(s):// or ws(s)://
        r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|'  # domain...
        r'localhost|'  # localhost...
        r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'  # ...or ip
        r'(?::\d+)?'  # optional port
        r'(?:/?|[/?]\S+)$', re.IGNORECASE)

    return bool(pattern.match(url))
