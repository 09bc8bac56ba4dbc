"""Proving backends for disclosure proofs.

A backend turns a witness into a proof and checks a proof against public
signals.  The witness lists every committed field in field-name order::

    {
        "commitment_root": "<hex>",
        "fields": [
            {"name": ..., "disclosed": 1, "value": ..., "blinding": "<hex>", "commitment": "<hex>"},
            {"name": ..., "disclosed": 0, "value": 0, "blinding": ZERO_BLINDING, "commitment": "<hex>"},
        ],
    }

Unflagged fields carry zeroed value and blinding slots; only their
commitment is available to the backend.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Protocol

from vccore.canonical import canonicalize
from vccore.commitments import aggregate, commit
from vccore.errors import ProofGenerationError
from vccore.models import FieldCommitment, PublicSignals

logger = logging.getLogger(__name__)

ZERO_BLINDING = "00" * 32

# BN254 scalar field, the field snarkjs circuits are compiled over.
SNARK_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class ProvingBackend(Protocol):
    name: str

    def prove(self, witness: dict[str, Any]) -> dict[str, Any]: ...

    def verify_proof(
        self,
        proof: dict[str, Any],
        public_signals: PublicSignals,
        verification_key: dict[str, Any] | None = None,
    ) -> bool: ...


class OpeningBackend:
    """Hash-commitment disclosure proofs.

    Disclosed leaves are opened by their blinding factor so the verifier can
    recompute their commitment from the disclosed value; hidden leaves travel
    as commitments only.  The verifier rebuilds the root from both.
    """

    name = "sha256-opening-v1"

    def prove(self, witness: dict[str, Any]) -> dict[str, Any]:
        leaves: list[dict[str, str]] = []
        for field in witness["fields"]:
            if field["disclosed"]:
                leaves.append({"blinding": field["blinding"]})
            else:
                leaves.append({"commitment": field["commitment"]})
        return {"leaves": leaves}

    def verify_proof(
        self,
        proof: dict[str, Any],
        public_signals: PublicSignals,
        verification_key: dict[str, Any] | None = None,
    ) -> bool:
        leaves = proof.get("leaves")
        if not isinstance(leaves, list) or len(leaves) != len(public_signals.field_names):
            return False

        commitments: list[FieldCommitment] = []
        for name, flag, leaf in zip(public_signals.field_names, public_signals.disclosure_flags, leaves):
            if not isinstance(leaf, dict):
                return False
            if flag:
                blinding = leaf.get("blinding")
                if not isinstance(blinding, str):
                    return False
                value = commit(name, public_signals.disclosed_values[name], blinding)
            else:
                value = leaf.get("commitment")
                if not isinstance(value, str) or not _HEX64.match(value):
                    return False
            commitments.append(FieldCommitment(field_name=name, commitment=value))
        return aggregate(commitments) == public_signals.commitment_root


def _field_element(hex_digest: str) -> str:
    return str(int(hex_digest, 16) % SNARK_FIELD)


def _value_element(value: Any) -> str:
    return _field_element(hashlib.sha256(canonicalize(value)).hexdigest())


def signal_list(public_signals: PublicSignals) -> list[str]:
    """Flatten public signals to the decimal field elements a circuit exposes.

    Order: root, one flag per field, then one value element per field
    (``0`` for hidden fields).
    """
    signals = [_field_element(public_signals.commitment_root)]
    signals.extend(str(flag) for flag in public_signals.disclosure_flags)
    for name, flag in zip(public_signals.field_names, public_signals.disclosure_flags):
        signals.append(_value_element(public_signals.disclosed_values[name]) if flag else "0")
    return signals


class SnarkjsBackend:
    """Groth16 proofs produced and checked by the ``snarkjs`` CLI.

    The circuit (compiled elsewhere) must implement the same aggregation as
    :func:`vccore.commitments.aggregate` and expose :func:`signal_list` as
    its public outputs.
    """

    name = "groth16-snarkjs"

    def __init__(
        self,
        wasm_path: str | Path,
        zkey_path: str | Path,
        verification_key_path: str | Path,
        *,
        snarkjs_bin: str = "snarkjs",
        timeout: int = 120,
    ) -> None:
        self._wasm = str(wasm_path)
        self._zkey = str(zkey_path)
        self._vkey = Path(verification_key_path)
        self._bin = snarkjs_bin
        self._timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [self._bin, *args],
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=False,
        )

    @staticmethod
    def circuit_inputs(witness: dict[str, Any]) -> dict[str, Any]:
        fields = witness["fields"]
        return {
            "root": _field_element(witness["commitment_root"]),
            "disclosed": [int(f["disclosed"]) for f in fields],
            "values": [_value_element(f["value"]) if f["disclosed"] else "0" for f in fields],
            "blindings": [_field_element(f["blinding"]) for f in fields],
            "commitments": [_field_element(f["commitment"]) for f in fields],
        }

    def prove(self, witness: dict[str, Any]) -> dict[str, Any]:
        inputs = self.circuit_inputs(witness)
        with tempfile.TemporaryDirectory() as tmp:
            workdir = Path(tmp)
            input_path = workdir / "input.json"
            proof_path = workdir / "proof.json"
            public_path = workdir / "public.json"
            input_path.write_text(json.dumps(inputs), encoding="utf-8")
            try:
                result = self._run(
                    "groth16", "fullprove",
                    str(input_path), self._wasm, self._zkey,
                    str(proof_path), str(public_path),
                )
            except (OSError, subprocess.SubprocessError) as exc:
                raise ProofGenerationError(f"snarkjs could not be run: {exc}") from exc
            if result.returncode != 0:
                raise ProofGenerationError(f"snarkjs fullprove failed: {result.stderr.strip()}")
            return {
                "groth16": json.loads(proof_path.read_text(encoding="utf-8")),
                "public": json.loads(public_path.read_text(encoding="utf-8")),
            }

    def verify_proof(
        self,
        proof: dict[str, Any],
        public_signals: PublicSignals,
        verification_key: dict[str, Any] | None = None,
    ) -> bool:
        if proof.get("public") != signal_list(public_signals):
            return False
        try:
            vkey = verification_key or json.loads(self._vkey.read_text(encoding="utf-8"))
            with tempfile.TemporaryDirectory() as tmp:
                workdir = Path(tmp)
                (workdir / "vkey.json").write_text(json.dumps(vkey), encoding="utf-8")
                (workdir / "public.json").write_text(json.dumps(proof["public"]), encoding="utf-8")
                (workdir / "proof.json").write_text(json.dumps(proof["groth16"]), encoding="utf-8")
                result = self._run(
                    "groth16", "verify",
                    str(workdir / "vkey.json"), str(workdir / "public.json"), str(workdir / "proof.json"),
                )
        except (OSError, subprocess.SubprocessError, ValueError, KeyError, TypeError):
            logger.warning("snarkjs verification could not run", exc_info=True)
            return False
        return result.returncode == 0 and "OK" in result.stdout
