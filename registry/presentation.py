from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.orm import Session

from registry.documents import committed_values
from registry.models import Credential
from registry.services import Services
from vccore.errors import CredentialNotFoundError, IssuanceStateError
from vccore.models import DisclosureProof

logger = logging.getLogger(__name__)


def present(session: Session, services: Services, credential_id: str, fields: Iterable[str]) -> DisclosureProof:
    """Build a fresh disclosure proof revealing only *fields* of a credential.

    The proof is made against the stored commitment root, so a holder can
    show a different subset than the one chosen at issuance.
    """
    with session.begin():
        record = session.get(Credential, credential_id)
        if record is None:
            raise CredentialNotFoundError(f"Credential {credential_id} not found")
        application = record.application

    if record.status == "REVOKED":
        raise IssuanceStateError(f"Credential {credential_id} is revoked")

    blindings = services.secret_store.get(record.blinding_ref)
    proof = services.prover.prove(
        committed_values(application),
        blindings,
        sorted(set(fields)),
        record.commitment_root,
    )
    logger.info("Built presentation for %s disclosing %s", credential_id, proof.public_signals.disclosed_fields)
    return proof
