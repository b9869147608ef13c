"""Circuit dispatcher selection from a certificate's key algorithm and size.

A dispatcher name has the form ``<FAMILY>[_<CURVE>]_<HASH>_<BITS>``, for
example ``RSA_SHA256_2048`` or ``ECDSA_SECP256R1_SHA256_512``.  The same name
is hashed with keccak-256 to produce the on-chain ``dataType`` tag.
"""

from __future__ import annotations

import logging

from eth_utils import keccak

from aumai_docseal.certificates import (
    OID_EC_PUBLIC_KEY,
    OID_RSA_ENCRYPTION,
    OID_RSASSA_PSS,
)
from aumai_docseal.errors import UnsupportedKeyAlgorithm
from aumai_docseal.models import Certificate

logger = logging.getLogger(__name__)

FAMILY_RSA = "RSA"
FAMILY_ECDSA = "ECDSA"

SIGNATURE_HASHES: dict[str, str] = {
    "1.2.840.113549.1.1.5": "SHA1",
    "1.2.840.113549.1.1.14": "SHA224",
    "1.2.840.113549.1.1.11": "SHA256",
    "1.2.840.113549.1.1.12": "SHA384",
    "1.2.840.113549.1.1.13": "SHA512",
    "1.2.840.10045.4.1": "SHA1",
    "1.2.840.10045.4.3.1": "SHA224",
    "1.2.840.10045.4.3.2": "SHA256",
    "1.2.840.10045.4.3.3": "SHA384",
    "1.2.840.10045.4.3.4": "SHA512",
}


def signature_hash_label(signature_algorithm: str | None) -> str | None:
    """Return the hash label for a signature OID, or None when unknown."""
    if signature_algorithm is None:
        return None
    return SIGNATURE_HASHES.get(signature_algorithm)


def rsa_bit_length(modulus: bytes) -> int:
    """Bit length used in dispatcher names: byte length after sign-byte strip, x8."""
    if len(modulus) > 1 and modulus[0] == 0:
        modulus = modulus[1:]
    return len(modulus) * 8


def classify(certificate: Certificate) -> str:
    """Return the dispatcher name for *certificate*'s public key.

    Raises:
        UnsupportedKeyAlgorithm: for RSA-PSS, explicit or unknown curves,
            compressed EC points and every non RSA/ECDSA key.
    """
    if certificate.signature_algorithm == OID_RSASSA_PSS:
        raise UnsupportedKeyAlgorithm("RSASSA-PSS signatures have no dispatcher")

    algorithm = certificate.public_key_algorithm
    if algorithm == OID_RSA_ENCRYPTION:
        parts = [FAMILY_RSA]
        bits = rsa_bit_length(certificate.public_key)
    elif algorithm == OID_EC_PUBLIC_KEY:
        if certificate.ec_parameters != "named" or certificate.curve is None:
            raise UnsupportedKeyAlgorithm(
                f"EC key with {certificate.ec_parameters or 'missing'} parameters "
                "is not on a supported named curve"
            )
        point = certificate.public_key
        if len(point) % 2:
            raise UnsupportedKeyAlgorithm("compressed EC points are not supported")
        half = len(point) // 2
        x, y = point[:half], point[half:]
        parts = [FAMILY_ECDSA, certificate.curve]
        bits = (len(x) + len(y)) * 8
    else:
        raise UnsupportedKeyAlgorithm(f"unsupported public key algorithm {algorithm}")

    hash_label = signature_hash_label(certificate.signature_algorithm)
    if hash_label is not None:
        parts.append(hash_label)
    parts.append(str(bits))

    name = "_".join(parts)
    logger.debug("classified certificate as %s", name)
    return name


def dispatcher_family(name: str) -> str:
    """Return the algorithm family (``RSA`` or ``ECDSA``) of a dispatcher name."""
    return name.split("_", 1)[0]


def dispatcher_bits(name: str) -> int:
    """Return the key bit length encoded at the end of a dispatcher name."""
    return int(name.rsplit("_", 1)[1])


def dispatcher_data_type(name: str) -> bytes:
    """keccak-256 of the dispatcher name, used as the on-chain ``dataType``."""
    return keccak(text=name)


__all__ = [
    "FAMILY_ECDSA",
    "FAMILY_RSA",
    "SIGNATURE_HASHES",
    "classify",
    "dispatcher_bits",
    "dispatcher_data_type",
    "dispatcher_family",
    "rsa_bit_length",
    "signature_hash_label",
]
