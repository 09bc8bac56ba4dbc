from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from vccore.backends import SNARK_FIELD, SnarkjsBackend, signal_list
from vccore.commitments import FieldCommitmentBuilder
from vccore.disclosure import DisclosureProver, DisclosureVerifier
from vccore.errors import ProofGenerationError

VALUES = {"childName": "Aarav", "dob": "2023-05-15"}
GROTH16 = {"pi_a": ["1", "2", "1"], "pi_b": [["1", "2"], ["3", "4"], ["1", "0"]], "pi_c": ["5", "6", "1"]}


@pytest.fixture()
def backend(tmp_path):
    vkey = tmp_path / "verification_key.json"
    vkey.write_text(json.dumps({"protocol": "groth16", "curve": "bn128"}), encoding="utf-8")
    return SnarkjsBackend(tmp_path / "disclosure.wasm", tmp_path / "disclosure.zkey", vkey, snarkjs_bin="snarkjs")


@pytest.fixture()
def committed():
    builder = FieldCommitmentBuilder()
    blindings = builder.generate_blindings(VALUES)
    _, root = builder.build(VALUES, blindings)
    return blindings, root


def _fake_fullprove(calls):
    def run(cmd, **kwargs):
        calls.append(cmd)
        inputs = json.loads(Path(cmd[3]).read_text(encoding="utf-8"))
        public = [inputs["root"], *(str(d) for d in inputs["disclosed"]), *inputs["values"]]
        Path(cmd[6]).write_text(json.dumps(GROTH16), encoding="utf-8")
        Path(cmd[7]).write_text(json.dumps(public), encoding="utf-8")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    return run


class TestSnarkjsBackend:
    def test_prove_runs_fullprove(self, backend, committed):
        blindings, root = committed
        calls = []
        with patch("vccore.backends.subprocess.run", side_effect=_fake_fullprove(calls)):
            proof = DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

        assert calls[0][:3] == ["snarkjs", "groth16", "fullprove"]
        assert proof.scheme == "groth16-snarkjs"
        assert proof.proof["groth16"] == GROTH16
        assert proof.proof["public"] == signal_list(proof.public_signals)

    def test_hidden_values_not_in_circuit_inputs(self, backend, committed):
        blindings, root = committed
        captured = {}

        def run(cmd, **kwargs):
            captured.update(json.loads(Path(cmd[3]).read_text(encoding="utf-8")))
            return _fake_fullprove([])(cmd, **kwargs)

        with patch("vccore.backends.subprocess.run", side_effect=run):
            DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

        assert captured["disclosed"] == [1, 0]
        assert captured["values"][1] == "0"
        assert captured["blindings"][1] == "0"
        assert all(0 <= int(x) < SNARK_FIELD for x in captured["commitments"])

    def test_fullprove_failure(self, backend, committed):
        blindings, root = committed
        failed = subprocess.CompletedProcess([], 1, stdout="", stderr="Error: Assert Failed")
        with patch("vccore.backends.subprocess.run", return_value=failed):
            with pytest.raises(ProofGenerationError, match="Assert Failed"):
                DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

    def test_missing_binary(self, backend, committed):
        blindings, root = committed
        with patch("vccore.backends.subprocess.run", side_effect=FileNotFoundError("snarkjs")):
            with pytest.raises(ProofGenerationError):
                DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

    def test_verify_accepts_ok(self, backend, committed):
        blindings, root = committed
        with patch("vccore.backends.subprocess.run", side_effect=_fake_fullprove([])):
            proof = DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

        ok = subprocess.CompletedProcess([], 0, stdout="[INFO]  snarkJS: OK!\n", stderr="")
        with patch("vccore.backends.subprocess.run", return_value=ok) as run:
            assert DisclosureVerifier([backend]).verify(proof)
        assert run.call_args.args[0][:3] == ["snarkjs", "groth16", "verify"]

    def test_verify_rejects_altered_value_without_running(self, backend, committed):
        blindings, root = committed
        with patch("vccore.backends.subprocess.run", side_effect=_fake_fullprove([])):
            proof = DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

        signals = proof.public_signals.model_copy(update={"disclosed_values": {"childName": "Vivaan"}})
        forged = proof.model_copy(update={"public_signals": signals})
        with patch("vccore.backends.subprocess.run") as run:
            assert not DisclosureVerifier([backend]).verify(forged)
        run.assert_not_called()

    def test_verify_invalid_proof(self, backend, committed):
        blindings, root = committed
        with patch("vccore.backends.subprocess.run", side_effect=_fake_fullprove([])):
            proof = DisclosureProver(backend).prove(VALUES, blindings, ["childName"], root)

        bad = subprocess.CompletedProcess([], 1, stdout="[ERROR] snarkJS: Invalid proof\n", stderr="")
        with patch("vccore.backends.subprocess.run", return_value=bad):
            assert not DisclosureVerifier([backend]).verify(proof)
