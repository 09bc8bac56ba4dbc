"""Credential commitment and verification primitives.

This package is isolated from the registry service.  It contains only:
canonical serialization, hiding field commitments and their Merkle
aggregation, disclosure proofs, delegated signer clients, blinding and
content stores, and the append-only anchor.
"""

from vccore.anchor import Anchor, LedgerAnchor
from vccore.backends import OpeningBackend, ProvingBackend, SnarkjsBackend
from vccore.canonical import canonicalize, content_hash
from vccore.commitments import FieldCommitmentBuilder, aggregate, commit
from vccore.disclosure import DisclosureProver, DisclosureVerifier
from vccore.errors import (
    AnchorError,
    ApplicationNotFoundError,
    CanonicalizationError,
    ContentStoreError,
    CredentialNotFoundError,
    CredentialProtocolError,
    DuplicateIssuanceError,
    IssuanceStateError,
    ProofGenerationError,
    RegistryPersistenceError,
    SigningError,
)
from vccore.merkle import EMPTY_ROOT, merkle_root
from vccore.models import (
    AnchorEntry,
    AnchorIssueRequest,
    AnchorReceipt,
    AnchorStatus,
    DisclosureProof,
    FieldCommitment,
    PublicSignals,
)
from vccore.secrets import InMemorySecretStore, SecretStore, VaultKVSecretStore
from vccore.signer import DelegatedSigner, LocalEd25519Signer, VaultTransitSigner
from vccore.storage import ContentStore, InMemoryContentStore, IpfsContentStore

__all__ = [
    "Anchor",
    "AnchorEntry",
    "AnchorError",
    "AnchorIssueRequest",
    "AnchorReceipt",
    "AnchorStatus",
    "ApplicationNotFoundError",
    "CanonicalizationError",
    "ContentStore",
    "ContentStoreError",
    "CredentialNotFoundError",
    "CredentialProtocolError",
    "DelegatedSigner",
    "DisclosureProof",
    "DisclosureProver",
    "DisclosureVerifier",
    "DuplicateIssuanceError",
    "EMPTY_ROOT",
    "FieldCommitment",
    "FieldCommitmentBuilder",
    "InMemoryContentStore",
    "InMemorySecretStore",
    "IpfsContentStore",
    "IssuanceStateError",
    "LedgerAnchor",
    "LocalEd25519Signer",
    "OpeningBackend",
    "ProofGenerationError",
    "ProvingBackend",
    "PublicSignals",
    "RegistryPersistenceError",
    "SecretStore",
    "SigningError",
    "SnarkjsBackend",
    "VaultKVSecretStore",
    "VaultTransitSigner",
    "aggregate",
    "canonicalize",
    "commit",
    "content_hash",
    "merkle_root",
]
