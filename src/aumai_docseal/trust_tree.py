"""Trust tree over a set of trusted root (master) certificates.

The tree is a compact sparse Merkle tree hashed with keccak-256:

* leaf hash:  ``keccak(key || value || 0x01)``
* node hash:  ``keccak(left || right)``
* empty:      32 zero bytes

The path of a leaf is read from its key, least significant bit first; bit 1
goes right.  A subtree that holds a single leaf collapses to that leaf, so the
root only depends on the set of leaves, never on insertion order.

Proof siblings are ordered root-to-leaf and zero-padded to the tree depth.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from eth_utils import keccak

from aumai_docseal.certificates import parse_certificate, public_key_fingerprint, to_x509
from aumai_docseal.errors import MalformedCertificate, NotFound
from aumai_docseal.models import Certificate, InclusionProof, MasterList

logger = logging.getLogger(__name__)

DEFAULT_DEPTH = 80
EMPTY_NODE = bytes(32)
LEAF_MARKER = b"\x01"


def hash_leaf(key: bytes, value: bytes) -> bytes:
    return keccak(key + value + LEAF_MARKER)


def hash_node(left: bytes, right: bytes) -> bytes:
    return keccak(left + right)


def _bit(key: int, depth: int) -> int:
    return (key >> depth) & 1


def leaf_key(certificate: Certificate) -> bytes:
    """Tree key of a certificate: keccak-256 of its public key material."""
    return public_key_fingerprint(certificate)


def leaf_value(certificate: Certificate) -> bytes:
    """Leaf value binding the key material to its algorithm."""
    return keccak(certificate.public_key_algorithm.encode("ascii") + certificate.public_key)


def compute_root(key: bytes, value: bytes, siblings: Sequence[bytes]) -> bytes:
    """Fold a leaf with its root-to-leaf *siblings* back up to the root.

    Trailing empty siblings are padding; the leaf sits at the depth of the
    last non-empty sibling.
    """
    trimmed = list(siblings)
    while trimmed and trimmed[-1] == EMPTY_NODE:
        trimmed.pop()

    key_int = int.from_bytes(key, "big")
    node = hash_leaf(key, value)
    for depth in range(len(trimmed) - 1, -1, -1):
        sibling = trimmed[depth]
        if _bit(key_int, depth):
            node = hash_node(sibling, node)
        else:
            node = hash_node(node, sibling)
    return node


def verify_inclusion(proof: InclusionProof, root: bytes | None = None) -> bool:
    """Return True if *proof* recomputes to *root* (default: ``proof.root``)."""
    expected = proof.root if root is None else root
    computed = compute_root(proof.key, proof.value, proof.siblings)
    return hmac.compare_digest(computed, expected)


@dataclass(frozen=True)
class _Leaf:
    key: bytes
    value: bytes
    certificate: Certificate | None = None


class TrustTree:
    """Merkle tree over trusted root certificates.

    Example:
        tree = TrustTree.build(master_certificates)
        proof = prove_inclusion(tree, master)
        assert verify_inclusion(proof, tree.root())
    """

    def __init__(self, depth: int = DEFAULT_DEPTH) -> None:
        if depth < 1:
            raise ValueError("tree depth must be positive")
        self.depth = depth
        self._leaves: dict[bytes, _Leaf] = {}
        self._nodes: dict[tuple[int, int], bytes] = {}
        self._leaf_nodes: dict[tuple[int, int], bytes] = {}
        self._root: bytes | None = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls, certificates: Iterable[Certificate], depth: int = DEFAULT_DEPTH
    ) -> TrustTree:
        """Build a tree keyed by each certificate's public key."""
        tree = cls(depth)
        for certificate in certificates:
            tree._insert(_Leaf(leaf_key(certificate), leaf_value(certificate), certificate))
        tree._rebuild()
        return tree

    @classmethod
    def from_leaves(
        cls, leaves: Mapping[bytes, bytes], depth: int = DEFAULT_DEPTH
    ) -> TrustTree:
        """Build a tree from raw ``{key: value}`` pairs of 32 bytes each."""
        tree = cls(depth)
        for key, value in leaves.items():
            if len(key) != 32 or len(value) != 32:
                raise ValueError("leaf keys and values must be 32 bytes")
            tree._insert(_Leaf(key, value))
        tree._rebuild()
        return tree

    def _insert(self, leaf: _Leaf) -> None:
        existing = self._leaves.get(leaf.key)
        if existing is not None and _leaf_order(existing) <= _leaf_order(leaf):
            return
        self._leaves[leaf.key] = leaf

    def _rebuild(self) -> None:
        self._nodes.clear()
        self._leaf_nodes.clear()
        keyed = [(int.from_bytes(key, "big"), leaf) for key, leaf in self._leaves.items()]
        self._root = self._subtree(keyed, 0, 0) if keyed else None
        logger.debug("trust tree rebuilt: leaves=%d depth=%d", len(keyed), self.depth)

    def _subtree(self, leaves: list[tuple[int, _Leaf]], depth: int, prefix: int) -> bytes:
        if not leaves:
            return EMPTY_NODE
        if len(leaves) == 1:
            leaf = leaves[0][1]
            node = hash_leaf(leaf.key, leaf.value)
            self._nodes[(depth, prefix)] = node
            self._leaf_nodes[(depth, prefix)] = leaf.key
            return node
        if depth >= self.depth:
            raise ValueError(f"keys collide on all {self.depth} path bits")
        left = [item for item in leaves if not _bit(item[0], depth)]
        right = [item for item in leaves if _bit(item[0], depth)]
        node = hash_node(
            self._subtree(left, depth + 1, prefix),
            self._subtree(right, depth + 1, prefix | (1 << depth)),
        )
        self._nodes[(depth, prefix)] = node
        return node

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._leaves)

    def __contains__(self, certificate: Certificate) -> bool:
        return leaf_key(certificate) in self._leaves

    def root(self) -> bytes:
        """Return the 32-byte root.

        Raises:
            ValueError: if the tree holds no leaves.
        """
        if self._root is None:
            raise ValueError("trust tree has no leaves")
        return self._root

    def certificates(self) -> list[Certificate]:
        """Trusted certificates ordered by tree key."""
        return [
            leaf.certificate
            for _, leaf in sorted(self._leaves.items())
            if leaf.certificate is not None
        ]

    def prove_key(self, key: bytes) -> InclusionProof:
        """Inclusion proof for a raw leaf key.

        Raises:
            NotFound: if *key* is not a leaf of this tree.
        """
        leaf = self._leaves.get(key)
        if leaf is None:
            raise NotFound(f"key 0x{key.hex()[:16]}... is not in the trust tree")

        key_int = int.from_bytes(key, "big")
        siblings: list[bytes] = []
        depth, prefix = 0, 0
        while (depth, prefix) not in self._leaf_nodes:
            bit = _bit(key_int, depth)
            sibling_prefix = prefix | ((1 - bit) << depth)
            siblings.append(self._nodes.get((depth + 1, sibling_prefix), EMPTY_NODE))
            prefix |= bit << depth
            depth += 1

        siblings.extend([EMPTY_NODE] * (self.depth - len(siblings)))
        return InclusionProof(key=key, value=leaf.value, siblings=siblings, root=self.root())

    def find_issuer(self, certificate: Certificate) -> Certificate | None:
        """Return the trusted certificate that issued *certificate*, if any.

        A candidate must carry the certificate's issuer as its subject and its
        key must verify the certificate's signature.
        """
        candidate_x509 = None
        for master in self.certificates():
            if master.subject != certificate.issuer:
                continue
            if candidate_x509 is None:
                candidate_x509 = to_x509(certificate)
            try:
                candidate_x509.verify_directly_issued_by(to_x509(master))
            except (InvalidSignature, ValueError, TypeError) as exc:
                logger.debug("issuer candidate rejected: %s", type(exc).__name__)
                continue
            return master
        return None


def _leaf_order(leaf: _Leaf) -> tuple[bytes, bytes]:
    der = leaf.certificate.der if leaf.certificate is not None else b""
    return leaf.value, der


def prove_inclusion(tree: TrustTree, certificate: Certificate) -> InclusionProof:
    """Inclusion proof for *certificate*.

    Raises:
        NotFound: if the certificate's key is absent from *tree*.
    """
    return tree.prove_key(leaf_key(certificate))


class TrustStore:
    """Owns the trust tree built from one versioned master list.

    The tree is rebuilt only when a master list with a different version is
    presented.
    """

    def __init__(self, depth: int = DEFAULT_DEPTH) -> None:
        self.depth = depth
        self._tree: TrustTree | None = None
        self._version: str | None = None
        self._published_root: bytes | None = None

    @property
    def version(self) -> str | None:
        return self._version

    @property
    def published_root(self) -> bytes | None:
        return self._published_root

    def tree_for(self, master_list: MasterList) -> TrustTree:
        """Return the tree for *master_list*, rebuilding on a version change."""
        if self._tree is not None and master_list.version == self._version:
            return self._tree

        certificates: list[Certificate] = []
        skipped = 0
        for index, der in enumerate(master_list.certificates):
            try:
                certificates.append(parse_certificate(der))
            except MalformedCertificate as exc:
                skipped += 1
                logger.warning("master list entry %d skipped: %s", index, exc)

        self._tree = TrustTree.build(certificates, self.depth)
        self._version = master_list.version
        self._published_root = master_list.published_root
        logger.info(
            "trust tree built for master list %s: leaves=%d skipped=%d",
            master_list.version,
            len(self._tree),
            skipped,
        )
        return self._tree


__all__ = [
    "DEFAULT_DEPTH",
    "EMPTY_NODE",
    "TrustStore",
    "TrustTree",
    "compute_root",
    "hash_leaf",
    "hash_node",
    "leaf_key",
    "leaf_value",
    "prove_inclusion",
    "verify_inclusion",
]
