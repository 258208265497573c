"""Handshake wire format and credential checks."""

from conduit.protocol.credential import CREDENTIAL_LENGTH, Credential, CredentialValidator
from conduit.protocol.handshake import (
    MIN_HANDSHAKE_LENGTH,
    PROTOCOL_VERSION,
    AddressType,
    ByteCursor,
    Command,
    ConnectRequest,
    ParsedHandshake,
    build_ack,
    decode_address,
    encode_handshake,
    parse_handshake,
)

__all__ = [
    "CREDENTIAL_LENGTH",
    "Credential",
    "CredentialValidator",
    "MIN_HANDSHAKE_LENGTH",
    "PROTOCOL_VERSION",
    "AddressType",
    "ByteCursor",
    "Command",
    "ConnectRequest",
    "ParsedHandshake",
    "build_ack",
    "decode_address",
    "encode_handshake",
    "parse_handshake",
]
