"""Certificate and Security Object Document parsing.

Certificates are loaded with ``cryptography``; CMS and LDS structures are
decoded with ``pyasn1``.  Byte offsets that the circuit proves over are
re-derived with the bounded DER walker in :mod:`aumai_docseal.der` so they only
depend on standard field order, never on a parser's internal re-encoding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from eth_utils import keccak
from pyasn1.codec.der.decoder import decode as der_decode
from pyasn1.error import PyAsn1Error
from pyasn1.type import char, namedtype, univ
from pyasn1_modules import rfc5280, rfc5652

from aumai_docseal.der import (
    TAG_BIT_STRING,
    TAG_GENERALIZED_TIME,
    TAG_INTEGER,
    TAG_OID,
    TAG_SEQUENCE,
    TAG_SET,
    TAG_UTC_TIME,
    Tlv,
    children,
    decode_oid,
    expect,
    read_tlv,
)
from aumai_docseal.errors import MalformedCertificate, MalformedSOD
from aumai_docseal.models import Certificate, SecurityObject

logger = logging.getLogger(__name__)

OID_RSA_ENCRYPTION = "1.2.840.113549.1.1.1"
OID_RSASSA_PSS = "1.2.840.113549.1.1.10"
OID_EC_PUBLIC_KEY = "1.2.840.10045.2.1"

NAMED_CURVES: dict[str, str] = {
    "1.2.840.10045.3.1.1": "SECP192R1",
    "1.3.132.0.33": "SECP224R1",
    "1.2.840.10045.3.1.7": "SECP256R1",
    "1.3.132.0.34": "SECP384R1",
    "1.3.132.0.35": "SECP521R1",
    "1.3.36.3.3.2.8.1.1.3": "BRAINPOOLP192R1",
    "1.3.36.3.3.2.8.1.1.5": "BRAINPOOLP224R1",
    "1.3.36.3.3.2.8.1.1.7": "BRAINPOOLP256R1",
    "1.3.36.3.3.2.8.1.1.9": "BRAINPOOLP320R1",
    "1.3.36.3.3.2.8.1.1.11": "BRAINPOOLP384R1",
    "1.3.36.3.3.2.8.1.1.13": "BRAINPOOLP512R1",
}

DIGEST_ALGORITHMS: dict[str, str] = {
    "1.3.14.3.2.26": "sha1",
    "2.16.840.1.101.3.4.2.4": "sha224",
    "2.16.840.1.101.3.4.2.1": "sha256",
    "2.16.840.1.101.3.4.2.2": "sha384",
    "2.16.840.1.101.3.4.2.3": "sha512",
}

SOD_APPLICATION_TAG = 0x77


# ---------------------------------------------------------------------------
# LDS security object (ICAO 9303 part 10)
# ---------------------------------------------------------------------------


class DataGroupHash(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType("dataGroupNumber", univ.Integer()),
        namedtype.NamedType("dataGroupHashValue", univ.OctetString()),
    )


class DataGroupHashValues(univ.SequenceOf):
    componentType = DataGroupHash()


class LDSVersionInfo(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType("ldsVersion", char.PrintableString()),
        namedtype.NamedType("unicodeVersion", char.PrintableString()),
    )


class LDSSecurityObject(univ.Sequence):
    componentType = namedtype.NamedTypes(
        namedtype.NamedType("version", univ.Integer()),
        namedtype.NamedType("hashAlgorithm", rfc5280.AlgorithmIdentifier()),
        namedtype.NamedType("dataGroupHashValues", DataGroupHashValues()),
        namedtype.OptionalNamedType("ldsVersionInfo", LDSVersionInfo()),
    )


# ---------------------------------------------------------------------------
# Certificate parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _KeyLayout:
    algorithm: str
    public_key: bytes
    key_offset: int
    rsa_exponent: int | None = None
    curve: str | None = None
    ec_parameters: str | None = None


def public_key_fingerprint(certificate: Certificate) -> bytes:
    """keccak-256 of the certificate's public key material."""
    return keccak(certificate.public_key)


def _load_x509(data: bytes) -> x509.Certificate:
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        raise MalformedCertificate(
            f"cannot decode certificate: {exc}", field="certificate"
        ) from exc


def _tbs_fields(tbs: bytes) -> list[Tlv]:
    root = read_tlv(tbs, 0, field="tbsCertificate", error=MalformedCertificate)
    expect(root, TAG_SEQUENCE, field="tbsCertificate", error=MalformedCertificate)
    fields = children(tbs, root, field="tbsCertificate", error=MalformedCertificate)
    # [0] EXPLICIT version is absent on v1 certificates.
    if fields and fields[0].tag == 0xA0:
        fields = fields[1:]
    if len(fields) < 6:
        raise MalformedCertificate(
            f"expected at least 6 TBS fields, found {len(fields)}",
            field="tbsCertificate",
            offset=root.offset,
        )
    return fields


def _expiration_field(tbs: bytes, validity: Tlv) -> Tlv:
    expect(validity, TAG_SEQUENCE, field="validity", error=MalformedCertificate)
    times = children(tbs, validity, field="validity", error=MalformedCertificate)
    if len(times) != 2:
        raise MalformedCertificate(
            "validity must hold notBefore and notAfter",
            field="validity",
            offset=validity.offset,
        )
    not_after = times[1]
    if not_after.tag not in (TAG_UTC_TIME, TAG_GENERALIZED_TIME):
        raise MalformedCertificate(
            f"unexpected notAfter tag 0x{not_after.tag:02x}",
            field="validity.notAfter",
            offset=not_after.offset,
        )
    return not_after


def _key_layout(tbs: bytes, spki: Tlv) -> _KeyLayout:
    expect(spki, TAG_SEQUENCE, field="subjectPublicKeyInfo", error=MalformedCertificate)
    parts = children(tbs, spki, field="subjectPublicKeyInfo", error=MalformedCertificate)
    if len(parts) != 2:
        raise MalformedCertificate(
            "subjectPublicKeyInfo must hold algorithm and key",
            field="subjectPublicKeyInfo",
            offset=spki.offset,
        )
    algorithm_id, bit_string = parts
    expect(algorithm_id, TAG_SEQUENCE, field="spki.algorithm", error=MalformedCertificate)
    expect(bit_string, TAG_BIT_STRING, field="spki.subjectPublicKey", error=MalformedCertificate)

    algorithm_parts = children(
        tbs, algorithm_id, field="spki.algorithm", error=MalformedCertificate
    )
    if not algorithm_parts:
        raise MalformedCertificate(
            "empty AlgorithmIdentifier", field="spki.algorithm", offset=algorithm_id.offset
        )
    oid_tlv = expect(
        algorithm_parts[0], TAG_OID, field="spki.algorithm", error=MalformedCertificate
    )
    algorithm = decode_oid(
        oid_tlv.raw(tbs), field="spki.algorithm", error=MalformedCertificate
    )

    if bit_string.length < 2 or tbs[bit_string.content_offset] != 0:
        raise MalformedCertificate(
            "public key BIT STRING must be octet aligned",
            field="spki.subjectPublicKey",
            offset=bit_string.offset,
        )
    key_start = bit_string.content_offset + 1

    if algorithm == OID_RSA_ENCRYPTION:
        rsa_key = read_tlv(
            tbs, key_start, limit=bit_string.end, field="RSAPublicKey", error=MalformedCertificate
        )
        expect(rsa_key, TAG_SEQUENCE, field="RSAPublicKey", error=MalformedCertificate)
        numbers = children(tbs, rsa_key, field="RSAPublicKey", error=MalformedCertificate)
        if len(numbers) != 2:
            raise MalformedCertificate(
                "RSAPublicKey must hold modulus and exponent",
                field="RSAPublicKey",
                offset=rsa_key.offset,
            )
        modulus, exponent = numbers
        expect(modulus, TAG_INTEGER, field="RSAPublicKey.modulus", error=MalformedCertificate)
        expect(exponent, TAG_INTEGER, field="RSAPublicKey.exponent", error=MalformedCertificate)
        start = modulus.content_offset
        # Sign byte added by INTEGER encoding when the top bit is set.
        if modulus.length > 1 and tbs[start] == 0:
            start += 1
        return _KeyLayout(
            algorithm=algorithm,
            public_key=tbs[start : modulus.end],
            key_offset=start,
            rsa_exponent=int.from_bytes(exponent.content(tbs), "big"),
        )

    if algorithm == OID_EC_PUBLIC_KEY:
        curve = None
        ec_parameters = None
        if len(algorithm_parts) > 1:
            params = algorithm_parts[1]
            if params.tag == TAG_OID:
                ec_parameters = "named"
                curve_oid = decode_oid(
                    params.raw(tbs), field="spki.parameters", error=MalformedCertificate
                )
                curve = NAMED_CURVES.get(curve_oid)
            elif params.tag == TAG_SEQUENCE:
                ec_parameters = "explicit"
        point = tbs[key_start : bit_string.end]
        # Uncompressed SEC1 point: 0x04 || X || Y.  Anything else keeps its
        # prefix byte so the odd length marks it as unusable downstream.
        if point[0] == 0x04 and len(point) % 2 == 1:
            return _KeyLayout(
                algorithm=algorithm,
                public_key=point[1:],
                key_offset=key_start + 1,
                curve=curve,
                ec_parameters=ec_parameters,
            )
        return _KeyLayout(
            algorithm=algorithm,
            public_key=point,
            key_offset=key_start,
            curve=curve,
            ec_parameters=ec_parameters,
        )

    return _KeyLayout(
        algorithm=algorithm,
        public_key=tbs[key_start : bit_string.end],
        key_offset=key_start,
    )


def parse_certificate(data: bytes) -> Certificate:
    """Parse a DER or PEM X.509 certificate.

    Raises:
        MalformedCertificate: if the certificate or its TBS layout cannot be
            decoded.  The message names the field and byte offset.
    """
    cert = _load_x509(data)
    try:
        tbs = cert.tbs_certificate_bytes
        signature = cert.signature
        signature_algorithm = cert.signature_algorithm_oid.dotted_string
        subject = cert.subject.rfc4514_string()
        issuer = cert.issuer.rfc4514_string()
        serial_number = cert.serial_number
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
    except ValueError as exc:
        raise MalformedCertificate(
            f"cannot decode certificate fields: {exc}", field="certificate"
        ) from exc

    fields = _tbs_fields(tbs)
    expiration = _expiration_field(tbs, fields[3])
    layout = _key_layout(tbs, fields[5])

    logger.debug(
        "parsed certificate: algorithm=%s key_bytes=%d key_offset=%d expiration_offset=%d",
        layout.algorithm,
        len(layout.public_key),
        layout.key_offset,
        expiration.content_offset,
    )

    return Certificate(
        der=cert.public_bytes(Encoding.DER),
        subject=subject,
        issuer=issuer,
        serial_number=serial_number,
        not_before=not_before,
        not_after=not_after,
        public_key_algorithm=layout.algorithm,
        public_key=layout.public_key,
        rsa_exponent=layout.rsa_exponent,
        curve=layout.curve,
        ec_parameters=layout.ec_parameters,
        signature_algorithm=signature_algorithm,
        signature=signature,
        tbs=tbs,
        key_offset=layout.key_offset,
        expiration_offset=expiration.content_offset,
        expiration_length=expiration.length,
    )


def to_x509(certificate: Certificate) -> x509.Certificate:
    """Load the ``cryptography`` object behind a parsed certificate."""
    return x509.load_der_x509_certificate(certificate.der)


# ---------------------------------------------------------------------------
# SOD parsing
# ---------------------------------------------------------------------------


def _unwrap_sod(data: bytes) -> bytes:
    if data[:1] == bytes([SOD_APPLICATION_TAG]):
        outer = read_tlv(data, 0, field="sod", error=MalformedSOD)
        return outer.content(data)
    return data


def _signed_data_fields(payload: bytes) -> list[Tlv]:
    content_info = read_tlv(payload, 0, field="ContentInfo", error=MalformedSOD)
    expect(content_info, TAG_SEQUENCE, field="ContentInfo", error=MalformedSOD)
    parts = children(payload, content_info, field="ContentInfo", error=MalformedSOD)
    if len(parts) != 2 or parts[1].tag != 0xA0:
        raise MalformedSOD(
            "ContentInfo must hold contentType and [0] content",
            field="ContentInfo",
            offset=content_info.offset,
        )
    wrapper = children(payload, parts[1], field="ContentInfo.content", error=MalformedSOD)
    if len(wrapper) != 1:
        raise MalformedSOD(
            "ContentInfo content must hold exactly one SignedData",
            field="ContentInfo.content",
            offset=parts[1].offset,
        )
    signed_data = expect(wrapper[0], TAG_SEQUENCE, field="SignedData", error=MalformedSOD)
    fields = children(payload, signed_data, field="SignedData", error=MalformedSOD)
    if len(fields) < 4:
        raise MalformedSOD(
            f"SignedData holds {len(fields)} fields, expected at least 4",
            field="SignedData",
            offset=signed_data.offset,
        )
    return fields


def _raw_certificates(payload: bytes, fields: list[Tlv]) -> list[bytes]:
    for field in fields:
        if field.tag == 0xA0:
            certs = children(payload, field, field="SignedData.certificates", error=MalformedSOD)
            return [cert.raw(payload) for cert in certs if cert.tag == TAG_SEQUENCE]
    return []


def _raw_signed_attributes(payload: bytes, fields: list[Tlv]) -> bytes:
    signer_infos = expect(fields[-1], TAG_SET, field="SignedData.signerInfos", error=MalformedSOD)
    infos = children(payload, signer_infos, field="SignedData.signerInfos", error=MalformedSOD)
    if not infos:
        raise MalformedSOD(
            "no SignerInfo present", field="SignedData.signerInfos", offset=signer_infos.offset
        )
    for part in children(payload, infos[0], field="SignerInfo", error=MalformedSOD):
        if part.tag == 0xA0:
            # Signed over as an explicit SET OF, not the implicit [0] tag.
            return bytes([TAG_SET]) + payload[part.offset + 1 : part.end]
    raise MalformedSOD("SignerInfo has no signed attributes", field="SignerInfo.signedAttrs")


def parse_sod(data: bytes) -> SecurityObject:
    """Parse an ICAO Security Object Document.

    Accepts the ``0x77`` application wrapper or a bare CMS ContentInfo.

    Raises:
        MalformedSOD: if the signed structure cannot be decoded or its
            content hash algorithm is not recognised.
        MalformedCertificate: if the embedded signing certificate is broken.
    """
    payload = _unwrap_sod(data)
    fields = _signed_data_fields(payload)
    signed_attributes = _raw_signed_attributes(payload, fields)

    try:
        content_info, _ = der_decode(payload, asn1Spec=rfc5652.ContentInfo())
        if content_info["contentType"] != rfc5652.id_signedData:
            raise MalformedSOD(
                f"unexpected content type {content_info['contentType']}", field="ContentInfo"
            )
        signed_data, _ = der_decode(
            content_info["content"].asOctets(), asn1Spec=rfc5652.SignedData()
        )
        encap = signed_data["encapContentInfo"]
        if not encap["eContent"].isValue:
            raise MalformedSOD("SOD carries no encapsulated content", field="eContent")
        encapsulated = encap["eContent"].asOctets()
        signer_info = signed_data["signerInfos"][0]
        signature = signer_info["signature"].asOctets()
        signature_algorithm = str(signer_info["signatureAlgorithm"]["algorithm"])
        lds, _ = der_decode(encapsulated, asn1Spec=LDSSecurityObject())
    except PyAsn1Error as exc:
        raise MalformedSOD(f"cannot decode signed structure: {exc}", field="SignedData") from exc

    hash_oid = str(lds["hashAlgorithm"]["algorithm"])
    digest_algorithm = DIGEST_ALGORITHMS.get(hash_oid)
    if digest_algorithm is None:
        raise MalformedSOD(
            f"unrecognised content hash algorithm {hash_oid}", field="LDSSecurityObject.hashAlgorithm"
        )
    data_group_hashes = {
        int(entry["dataGroupNumber"]): entry["dataGroupHashValue"].asOctets()
        for entry in lds["dataGroupHashValues"]
    }

    raw_certs = _raw_certificates(payload, fields)
    if not raw_certs:
        raise MalformedSOD("SOD carries no signing certificate", field="SignedData.certificates")
    signing_certificate = parse_certificate(raw_certs[0])

    logger.debug(
        "parsed SOD: digest=%s data_groups=%s certificates=%d",
        digest_algorithm,
        sorted(data_group_hashes),
        len(raw_certs),
    )

    return SecurityObject(
        signing_certificate=signing_certificate,
        certificate_index=public_key_fingerprint(signing_certificate),
        digest_algorithm=digest_algorithm,
        data_group_hashes=data_group_hashes,
        encapsulated_content=encapsulated,
        signed_attributes=signed_attributes,
        signature=signature,
        signature_algorithm=signature_algorithm,
    )


__all__ = [
    "DIGEST_ALGORITHMS",
    "LDSSecurityObject",
    "NAMED_CURVES",
    "OID_EC_PUBLIC_KEY",
    "OID_RSASSA_PSS",
    "OID_RSA_ENCRYPTION",
    "parse_certificate",
    "parse_sod",
    "public_key_fingerprint",
    "to_x509",
]
