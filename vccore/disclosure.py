from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from vccore.backends import ZERO_BLINDING, OpeningBackend, ProvingBackend
from vccore.commitments import FieldCommitmentBuilder
from vccore.errors import CredentialProtocolError, ProofGenerationError
from vccore.models import DisclosureProof, PublicSignals

logger = logging.getLogger(__name__)


class DisclosureProver:
    """Produces proofs that a disclosed subset of fields matches a commitment root."""

    def __init__(self, backend: ProvingBackend | None = None) -> None:
        self.backend = backend or OpeningBackend()

    def prove(
        self,
        values: Mapping[str, Any],
        blindings: Mapping[str, str],
        flags: Iterable[str],
        expected_root: str,
    ) -> DisclosureProof:
        disclosed = set(flags)
        unknown = sorted(disclosed - set(values))
        if unknown:
            raise ProofGenerationError(f"cannot disclose unknown fields: {unknown}")

        try:
            commitments, root = FieldCommitmentBuilder().build(values, blindings)
        except ValueError as exc:
            raise ProofGenerationError(str(exc)) from exc
        if root != expected_root:
            raise ProofGenerationError("field values do not match the commitment root")

        fields = []
        for fc in commitments:
            name = fc.field_name
            is_open = name in disclosed
            fields.append({
                "name": name,
                "disclosed": 1 if is_open else 0,
                "value": values[name] if is_open else 0,
                "blinding": blindings[name] if is_open else ZERO_BLINDING,
                "commitment": fc.commitment,
            })
        witness = {"commitment_root": root, "fields": fields}

        try:
            proof = self.backend.prove(witness)
        except ProofGenerationError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise ProofGenerationError(f"backend {self.backend.name} rejected the witness: {exc}") from exc

        signals = PublicSignals(
            commitment_root=root,
            field_names=[f["name"] for f in fields],
            disclosure_flags=[f["disclosed"] for f in fields],
            disclosed_values={n: values[n] for n in sorted(disclosed)},
        )
        return DisclosureProof(scheme=self.backend.name, proof=proof, public_signals=signals)


class DisclosureVerifier:
    """Checks disclosure proofs; a bad proof is ``False``, never an exception."""

    def __init__(
        self,
        backends: Iterable[ProvingBackend] | None = None,
        verification_key: dict[str, Any] | None = None,
    ) -> None:
        self._backends = {b.name: b for b in (backends or [OpeningBackend()])}
        self._verification_key = verification_key

    def verify(self, proof: DisclosureProof | Mapping[str, Any]) -> bool:
        try:
            if not isinstance(proof, DisclosureProof):
                proof = DisclosureProof.model_validate(proof)
        except ValidationError:
            return False

        backend = self._backends.get(proof.scheme)
        if backend is None:
            logger.warning("No backend registered for proof scheme %s", proof.scheme)
            return False
        try:
            return bool(backend.verify_proof(proof.proof, proof.public_signals, self._verification_key))
        except (CredentialProtocolError, KeyError, TypeError, ValueError):
            logger.warning("Disclosure proof rejected by %s", proof.scheme, exc_info=True)
            return False
