"""Bounded DER TLV walker.

Used to locate byte ranges inside signed blobs without re-serialising them.
Every length is validated against the enclosing buffer before it is used.
"""

from __future__ import annotations

from dataclasses import dataclass

from pyasn1.codec.der.decoder import decode as der_decode
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ

from aumai_docseal.errors import MalformedInputError

TAG_INTEGER = 0x02
TAG_BIT_STRING = 0x03
TAG_OCTET_STRING = 0x04
TAG_OID = 0x06
TAG_SEQUENCE = 0x30
TAG_SET = 0x31
TAG_UTC_TIME = 0x17
TAG_GENERALIZED_TIME = 0x18


@dataclass(frozen=True)
class Tlv:
    """Location of one DER element inside a buffer."""

    tag: int
    offset: int
    header_length: int
    length: int

    @property
    def content_offset(self) -> int:
        return self.offset + self.header_length

    @property
    def end(self) -> int:
        return self.content_offset + self.length

    @property
    def constructed(self) -> bool:
        return bool(self.tag & 0x20)

    def content(self, buf: bytes) -> bytes:
        return buf[self.content_offset : self.end]

    def raw(self, buf: bytes) -> bytes:
        return buf[self.offset : self.end]


def read_tlv(
    buf: bytes,
    offset: int,
    *,
    limit: int | None = None,
    field: str = "tlv",
    error: type[MalformedInputError] = MalformedInputError,
) -> Tlv:
    """Read the TLV header at *offset* and check it fits before *limit*.

    Only low tag numbers are accepted; DER certificates and SODs never use
    multi-byte tags.

    Raises:
        error: if the header or the announced content runs past *limit*.
    """
    end_limit = len(buf) if limit is None else min(limit, len(buf))
    if offset < 0 or offset + 2 > end_limit:
        raise error("truncated TLV header", field=field, offset=offset)

    tag = buf[offset]
    if tag & 0x1F == 0x1F:
        raise error(f"high tag number form 0x{tag:02x} not supported", field=field, offset=offset)

    first = buf[offset + 1]
    if first < 0x80:
        header_length = 2
        length = first
    else:
        count = first & 0x7F
        if count == 0 or count > 4:
            raise error(f"unsupported length form 0x{first:02x}", field=field, offset=offset)
        if offset + 2 + count > end_limit:
            raise error("truncated long-form length", field=field, offset=offset)
        length = int.from_bytes(buf[offset + 2 : offset + 2 + count], "big")
        header_length = 2 + count

    tlv = Tlv(tag=tag, offset=offset, header_length=header_length, length=length)
    if tlv.end > end_limit:
        raise error(
            f"content length {length} exceeds buffer", field=field, offset=offset
        )
    return tlv


def children(
    buf: bytes,
    parent: Tlv,
    *,
    field: str = "tlv",
    error: type[MalformedInputError] = MalformedInputError,
) -> list[Tlv]:
    """Return the direct children of a constructed element."""
    if not parent.constructed:
        raise error("expected a constructed element", field=field, offset=parent.offset)
    items: list[Tlv] = []
    cursor = parent.content_offset
    while cursor < parent.end:
        child = read_tlv(buf, cursor, limit=parent.end, field=field, error=error)
        items.append(child)
        cursor = child.end
    return items


def expect(
    tlv: Tlv,
    tag: int,
    *,
    field: str,
    error: type[MalformedInputError] = MalformedInputError,
) -> Tlv:
    """Return *tlv* unchanged if it carries *tag*, otherwise raise *error*."""
    if tlv.tag != tag:
        raise error(
            f"expected tag 0x{tag:02x}, found 0x{tlv.tag:02x}",
            field=field,
            offset=tlv.offset,
        )
    return tlv


def decode_oid(
    raw: bytes,
    *,
    field: str = "oid",
    error: type[MalformedInputError] = MalformedInputError,
) -> str:
    """Decode a complete OBJECT IDENTIFIER TLV to dotted notation."""
    try:
        oid, _ = der_decode(raw, asn1Spec=univ.ObjectIdentifier())
    except PyAsn1Error as exc:
        raise error(f"bad OBJECT IDENTIFIER: {exc}", field=field) from exc
    return str(oid)


__all__ = [
    "TAG_BIT_STRING",
    "TAG_GENERALIZED_TIME",
    "TAG_INTEGER",
    "TAG_OCTET_STRING",
    "TAG_OID",
    "TAG_SEQUENCE",
    "TAG_SET",
    "TAG_UTC_TIME",
    "Tlv",
    "children",
    "decode_oid",
    "expect",
    "read_tlv",
]
