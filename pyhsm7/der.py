"""
Minimal, strict codec for the Distinguished Encoding Rules (DER) subset
needed to assemble and take apart CMS ``SignedData`` structures.

The contents octets of primitive values are produced and interpreted by
:mod:`asn1crypto.core`; this module takes care of the framing (tags and
lengths) and of enforcing DER strictly while decoding. Any deviation from
DER results in a :class:`.MalformedEncodingError`, in particular

* indefinite-length encodings,
* lengths that are not encoded in the minimal number of octets,
* truncated input,
* ``SET OF`` elements that are not in canonical order,
* non-minimal ``INTEGER`` and ``OBJECT IDENTIFIER`` contents.

Decoders return a ``(value, remainder)`` tuple, so that sequences of values
can be consumed front to back.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from asn1crypto import core

from .general import MalformedEncodingError

__all__ = [
    'TLV',
    'INTEGER',
    'OCTET_STRING',
    'NULL',
    'OBJECT_IDENTIFIER',
    'SEQUENCE',
    'SET',
    'context_tag',
    'encode_length',
    'encode_tlv',
    'encode_integer',
    'encode_octet_string',
    'encode_oid',
    'encode_null',
    'encode_sequence',
    'encode_set',
    'encode_explicit',
    'encode_implicit',
    'read_tlv',
    'peek_tag',
    'expect_tlv',
    'load_single',
    'split_elements',
    'decode_integer',
    'decode_octet_string',
    'decode_oid',
    'decode_null',
    'decode_sequence',
    'decode_set',
    'decode_explicit',
    'decode_implicit',
]

# identifier octets of the universal types we deal with
INTEGER = 0x02
OCTET_STRING = 0x04
NULL = 0x05
OBJECT_IDENTIFIER = 0x06
SEQUENCE = 0x30
SET = 0x31

_CONSTRUCTED = 0x20
_CONTEXT = 0x80


def context_tag(number: int, constructed: bool = True) -> int:
    """
    Compute the identifier octet of a context-specific tag.

    :param number:
        The tag number. Only the low tag number form is supported.
    :param constructed:
        Whether the tagged value uses the constructed encoding.
    :return:
        The identifier octet.
    """
    if not 0 <= number < 31:
        raise ValueError(f"Tag number {number} is not supported")
    return _CONTEXT | (_CONSTRUCTED if constructed else 0) | number


@dataclass(frozen=True)
class TLV:
    """
    A single decoded tag-length-value triple.
    """

    tag: int
    """
    The identifier octet.
    """

    contents: bytes
    """
    The contents octets.
    """

    encoded: bytes
    """
    The full encoding of the value, header included.
    """

    @property
    def constructed(self) -> bool:
        return bool(self.tag & _CONSTRUCTED)


def encode_length(length: int) -> bytes:
    if length < 0:
        raise ValueError("Length must be nonnegative")
    if length < 0x80:
        return bytes((length,))
    length_bytes = length.to_bytes((length.bit_length() + 7) // 8, 'big')
    return bytes((0x80 | len(length_bytes),)) + length_bytes


def encode_tlv(tag: int, contents: bytes) -> bytes:
    return bytes((tag,)) + encode_length(len(contents)) + contents


def encode_integer(value: int) -> bytes:
    return encode_tlv(INTEGER, core.Integer(value).contents)


def encode_octet_string(value: bytes) -> bytes:
    return encode_tlv(OCTET_STRING, core.OctetString(value).contents)


def encode_oid(dotted: str) -> bytes:
    return encode_tlv(
        OBJECT_IDENTIFIER, core.ObjectIdentifier(dotted).contents
    )


def encode_null() -> bytes:
    return encode_tlv(NULL, b'')


def encode_sequence(elements: Iterable[bytes]) -> bytes:
    return encode_tlv(SEQUENCE, b''.join(elements))


def encode_set(elements: Iterable[bytes], tag: int = SET) -> bytes:
    """
    Encode a ``SET OF`` value. The (already encoded) elements are sorted
    as required by X.690, § 11.6.

    :param elements:
        DER-encoded elements, in any order.
    :param tag:
        Identifier octet to use. Defaults to the universal ``SET`` tag;
        pass a context-specific tag to produce an implicitly tagged set.
    :return:
        The DER encoding of the set.
    """
    # TLV encodings are self-delimiting, so none of them is a proper prefix
    # of another one, and plain lexicographic order coincides with the
    # zero-padded comparison prescribed by X.690
    return encode_tlv(tag, b''.join(sorted(elements)))


def encode_explicit(number: int, inner: bytes) -> bytes:
    return encode_tlv(context_tag(number, constructed=True), inner)


def encode_implicit(number: int, encoded: bytes) -> bytes:
    """
    Replace the tag of a DER-encoded value by a context-specific tag,
    preserving its primitive/constructed form.

    :param number:
        The context-specific tag number.
    :param encoded:
        The DER encoding of the untagged value.
    :return:
        The implicitly tagged encoding.
    """
    tlv = load_single(encoded)
    return encode_tlv(
        context_tag(number, constructed=tlv.constructed), tlv.contents
    )


def read_tlv(data: bytes) -> Tuple[TLV, bytes]:
    """
    Read a single TLV from the front of a byte string, enforcing DER framing
    rules.

    :param data:
        The input.
    :return:
        The decoded TLV and the unconsumed remainder of the input.
    :raises MalformedEncodingError:
        if the input is truncated or the length encoding is not DER.
    """
    if len(data) < 2:
        raise MalformedEncodingError("Truncated object")
    tag = data[0]
    if tag & 0x1F == 0x1F:
        raise MalformedEncodingError("High tag number form is not supported")
    first = data[1]
    if first < 0x80:
        length = first
        offset = 2
    elif first == 0x80:
        raise MalformedEncodingError(
            "Indefinite-length encoding is not allowed in DER"
        )
    else:
        num_octets = first & 0x7F
        if num_octets == 0x7F:
            raise MalformedEncodingError("Reserved length octet")
        offset = 2 + num_octets
        if len(data) < offset:
            raise MalformedEncodingError("Truncated length")
        length_octets = data[2:offset]
        if length_octets[0] == 0:
            raise MalformedEncodingError(
                "Length is not encoded in the minimal number of octets"
            )
        length = int.from_bytes(length_octets, 'big')
        if length < 0x80:
            raise MalformedEncodingError(
                f"Length {length} must use the short form"
            )
    end = offset + length
    if len(data) < end:
        raise MalformedEncodingError(
            f"Object extends {end - len(data)} bytes past end of input"
        )
    return TLV(tag, bytes(data[offset:end]), bytes(data[:end])), data[end:]


def peek_tag(data: bytes) -> Optional[int]:
    return data[0] if data else None


def expect_tlv(data: bytes, tag: int) -> Tuple[TLV, bytes]:
    if not data:
        raise MalformedEncodingError(f"Expected tag {tag:#04x}, but found EOF")
    if data[0] != tag:
        raise MalformedEncodingError(
            f"Expected tag {tag:#04x}, but found {data[0]:#04x}"
        )
    return read_tlv(data)


def load_single(data: bytes, tag: Optional[int] = None) -> TLV:
    """
    Decode a byte string that must consist of exactly one TLV.
    """
    tlv, rest = read_tlv(data) if tag is None else expect_tlv(data, tag)
    if rest:
        raise MalformedEncodingError(
            f"Unexpected trailing data ({len(rest)} bytes)"
        )
    return tlv


def split_elements(contents: bytes) -> List[TLV]:
    result = []
    while contents:
        tlv, contents = read_tlv(contents)
        result.append(tlv)
    return result


def decode_integer(data: bytes) -> Tuple[int, bytes]:
    tlv, rest = expect_tlv(data, INTEGER)
    contents = tlv.contents
    if not contents:
        raise MalformedEncodingError("Empty INTEGER")
    if len(contents) > 1 and (
        (contents[0] == 0x00 and contents[1] < 0x80)
        or (contents[0] == 0xFF and contents[1] >= 0x80)
    ):
        raise MalformedEncodingError("INTEGER is not minimally encoded")
    return core.Integer(contents=contents).native, rest


def decode_octet_string(data: bytes) -> Tuple[bytes, bytes]:
    # constructed (segmented) octet strings are BER, not DER
    tlv, rest = expect_tlv(data, OCTET_STRING)
    return tlv.contents, rest


def decode_oid(data: bytes) -> Tuple[str, bytes]:
    tlv, rest = expect_tlv(data, OBJECT_IDENTIFIER)
    contents = tlv.contents
    if not contents or contents[-1] & 0x80:
        raise MalformedEncodingError("Truncated OBJECT IDENTIFIER")
    at_start = True
    for b in contents:
        if at_start and b == 0x80:
            raise MalformedEncodingError(
                "OBJECT IDENTIFIER arc is not minimally encoded"
            )
        at_start = not b & 0x80
    return core.ObjectIdentifier(contents=contents).dotted, rest


def decode_null(data: bytes) -> Tuple[None, bytes]:
    tlv, rest = expect_tlv(data, NULL)
    if tlv.contents:
        raise MalformedEncodingError("NULL must not have contents")
    return None, rest


def decode_sequence(
    data: bytes, tag: int = SEQUENCE
) -> Tuple[List[TLV], bytes]:
    tlv, rest = expect_tlv(data, tag)
    return split_elements(tlv.contents), rest


def decode_set(data: bytes, tag: int = SET) -> Tuple[List[TLV], bytes]:
    """
    Decode a ``SET OF`` value, verifying that its elements are in DER
    canonical order.

    :param data:
        The input.
    :param tag:
        The expected identifier octet (universal ``SET`` by default).
    :return:
        The list of element TLVs and the remainder of the input.
    """
    tlv, rest = expect_tlv(data, tag)
    elements = split_elements(tlv.contents)
    for cur, nxt in zip(elements, elements[1:]):
        if cur.encoded > nxt.encoded:
            raise MalformedEncodingError(
                "SET OF elements are not in DER canonical order"
            )
    return elements, rest


def decode_explicit(data: bytes, number: int) -> Tuple[TLV, bytes]:
    outer, rest = expect_tlv(data, context_tag(number, constructed=True))
    return load_single(outer.contents), rest


def decode_implicit(
    data: bytes, number: int, constructed: bool = True
) -> Tuple[TLV, bytes]:
    return expect_tlv(data, context_tag(number, constructed=constructed))
