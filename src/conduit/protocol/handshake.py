"""Tunneling handshake decoding.

The first binary message of every session carries, in order:

    version(1) credential(16) option_len(1) options(N) command(1)
    port(2, big-endian) address_type(1) address(4 | 1+L | 16) payload(...)

Parsing walks a bounds-checked ByteCursor, so a truncated or malformed
header always surfaces as a HandshakeMalformed subclass rather than an
IndexError or a silent short read.
"""

from __future__ import annotations

import ipaddress
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from conduit.core.exceptions import (
    CredentialMismatch,
    HandshakeTooShort,
    TruncatedAddress,
    UnsupportedAddressType,
    UnsupportedCommand,
    UnsupportedVersion,
)
from conduit.protocol.credential import CREDENTIAL_LENGTH, Credential, CredentialValidator

PROTOCOL_VERSION = 0

# version + credential + option length + command
MIN_HANDSHAKE_LENGTH = 1 + CREDENTIAL_LENGTH + 1 + 1


class AddressType(IntEnum):
    IPV4 = 1
    DOMAIN = 2
    IPV6 = 3


class Command(IntEnum):
    TCP = 1
    UDP = 2
    MUX = 3


class ByteCursor:
    """Forward-only reader over an immutable byte buffer."""

    __slots__ = ("_data", "_offset")

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def has(self, count: int) -> bool:
        return self.remaining >= count

    def skip(self, count: int) -> None:
        self.read(count)

    def read(self, count: int) -> bytes:
        if count < 0 or not self.has(count):
            raise EOFError(f"need {count} bytes at offset {self._offset}, have {self.remaining}")
        chunk = self._data[self._offset : self._offset + count]
        self._offset += count
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_u16(self) -> int:
        return int.from_bytes(self.read(2), "big")

    def rest(self) -> bytes:
        return self._data[self._offset :]


class ConnectRequest(BaseModel):
    """Decoded destination of a tunneling handshake."""

    model_config = ConfigDict(frozen=True)

    version: int = PROTOCOL_VERSION
    command: Command = Command.TCP
    address_type: AddressType
    host: str
    port: int = Field(ge=0, le=65535)
    header_length: int


class ParsedHandshake(BaseModel):
    """Connect request plus any payload that arrived in the same message."""

    model_config = ConfigDict(frozen=True)

    request: ConnectRequest
    payload: bytes = b""


def decode_address(cursor: ByteCursor, tag: int) -> str:
    """Decode one destination host starting at the cursor position.

    Raises:
        UnsupportedAddressType: If the tag is not IPv4, domain or IPv6.
        TruncatedAddress: If the buffer ends inside the address.
    """
    try:
        address_type = AddressType(tag)
    except ValueError:
        raise UnsupportedAddressType(f"address type {tag}") from None

    try:
        if address_type is AddressType.IPV4:
            return ".".join(str(octet) for octet in cursor.read(4))
        if address_type is AddressType.DOMAIN:
            length = cursor.read_u8()
            return cursor.read(length).decode("utf-8", errors="replace")
        raw = cursor.read(16)
        return ":".join(format(int.from_bytes(raw[i : i + 2], "big"), "x") for i in range(0, 16, 2))
    except EOFError as e:
        raise TruncatedAddress(str(e)) from e


def parse_handshake(data: bytes, credential: Credential | CredentialValidator) -> ParsedHandshake:
    """Decode the first message of a session.

    Raises:
        HandshakeTooShort: Fewer bytes than the fixed header needs.
        UnsupportedVersion: Version byte is not 0.
        CredentialMismatch: The 16 credential bytes differ from the configured ones.
        UnsupportedCommand: Command other than opening a TCP stream.
        UnsupportedAddressType: Unknown address tag.
        TruncatedAddress: Message ends inside the address.
    """
    validator = credential if isinstance(credential, CredentialValidator) else CredentialValidator(credential)

    if len(data) < MIN_HANDSHAKE_LENGTH:
        raise HandshakeTooShort(f"{len(data)} bytes, need at least {MIN_HANDSHAKE_LENGTH}")

    cursor = ByteCursor(bytes(data))
    version = cursor.read_u8()
    if version != PROTOCOL_VERSION:
        raise UnsupportedVersion(f"version {version}")

    if not validator.check(cursor.read(CREDENTIAL_LENGTH)):
        raise CredentialMismatch()

    option_length = cursor.read_u8()
    # options, command, then at least port + address type
    if not cursor.has(option_length + 1 + 3):
        raise HandshakeTooShort(f"{len(data)} bytes, need at least {MIN_HANDSHAKE_LENGTH + option_length + 3}")
    cursor.skip(option_length)

    command = cursor.read_u8()
    if command != Command.TCP:
        raise UnsupportedCommand(f"command {command}")

    port = cursor.read_u16()
    tag = cursor.read_u8()
    host = decode_address(cursor, tag)

    request = ConnectRequest(
        version=version,
        command=Command(command),
        address_type=AddressType(tag),
        host=host,
        port=port,
        header_length=cursor.offset,
    )
    return ParsedHandshake(request=request, payload=cursor.rest())


def encode_handshake(
    credential: Credential,
    host: str,
    port: int,
    address_type: AddressType,
    payload: bytes = b"",
    options: bytes = b"",
    command: int = Command.TCP,
    version: int = PROTOCOL_VERSION,
) -> bytes:
    """Build a handshake message, the client-side mirror of parse_handshake."""
    frame = bytearray()
    frame.append(version)
    frame.extend(credential.value)
    frame.append(len(options))
    frame.extend(options)
    frame.append(command)
    frame.extend(port.to_bytes(2, "big"))
    frame.append(address_type)
    if address_type == AddressType.IPV4:
        frame.extend(ipaddress.IPv4Address(host).packed)
    elif address_type == AddressType.DOMAIN:
        name = host.encode()
        frame.append(len(name))
        frame.extend(name)
    else:
        frame.extend(ipaddress.IPv6Address(host).packed)
    frame.extend(payload)
    return bytes(frame)


def build_ack(version: int = PROTOCOL_VERSION) -> bytes:
    """Two-byte acknowledgment sent once the outbound stream is open."""
    return bytes((version, 0))
