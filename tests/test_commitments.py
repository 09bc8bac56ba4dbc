from __future__ import annotations

import hashlib

import pytest

from vccore.canonical import canonicalize
from vccore.commitments import FieldCommitmentBuilder, aggregate, commit, leaf_hash
from vccore.merkle import EMPTY_ROOT, _hash_node, merkle_root
from vccore.models import FieldCommitment

BLIND_A = "11" * 32
BLIND_B = "22" * 32


class TestCommit:
    def test_matches_definition(self):
        expected = hashlib.sha256(
            b"\x02" + canonicalize(["childName", "Aarav"]) + bytes.fromhex(BLIND_A)
        ).hexdigest()
        assert commit("childName", "Aarav", BLIND_A) == expected

    def test_binding_to_value(self):
        assert commit("childName", "Aarav", BLIND_A) != commit("childName", "Aarav2", BLIND_A)

    def test_binding_to_field_name(self):
        assert commit("childName", "Aarav", BLIND_A) != commit("motherName", "Aarav", BLIND_A)

    def test_hiding_depends_on_blinding(self):
        assert commit("dob", "2023-05-15", BLIND_A) != commit("dob", "2023-05-15", BLIND_B)

    def test_accepts_bytes_blinding(self):
        assert commit("dob", "2023-05-15", bytes.fromhex(BLIND_A)) == commit("dob", "2023-05-15", BLIND_A)

    def test_short_blinding_rejected(self):
        with pytest.raises(ValueError, match="at least 16 bytes"):
            commit("dob", "2023-05-15", "ab" * 8)


class TestAggregate:
    def test_empty_set(self):
        assert aggregate([]) == EMPTY_ROOT

    def test_single_leaf_root_is_leaf_hash(self):
        fc = FieldCommitment(field_name="dob", commitment=commit("dob", "x", BLIND_A))
        assert aggregate([fc]) == leaf_hash(fc)

    def test_order_independent(self):
        a = FieldCommitment(field_name="a", commitment=commit("a", 1, BLIND_A))
        b = FieldCommitment(field_name="b", commitment=commit("b", 2, BLIND_B))
        assert aggregate([a, b]) == aggregate([b, a])
        assert aggregate([a, b]) == _hash_node(leaf_hash(a), leaf_hash(b))

    def test_odd_leaf_paired_with_itself(self):
        leaves = ["aa" * 32, "bb" * 32, "cc" * 32]
        expected = _hash_node(_hash_node(leaves[0], leaves[1]), _hash_node(leaves[2], leaves[2]))
        assert merkle_root(leaves) == expected

    def test_duplicate_field_rejected(self):
        a = FieldCommitment(field_name="a", commitment=commit("a", 1, BLIND_A))
        with pytest.raises(ValueError, match="duplicate"):
            aggregate([a, a])


class TestBuilder:
    def test_fresh_blinding_per_field(self):
        builder = FieldCommitmentBuilder()
        blindings = builder.generate_blindings(["childName", "dob", "gender"])
        assert sorted(blindings) == ["childName", "dob", "gender"]
        assert len(set(blindings.values())) == 3
        assert all(len(bytes.fromhex(b)) == 32 for b in blindings.values())

    def test_build_returns_sorted_commitments_and_root(self):
        values = {"dob": "2023-05-15", "childName": "Aarav"}
        builder = FieldCommitmentBuilder()
        blindings = builder.generate_blindings(values)
        commitments, root = builder.build(values, blindings)
        assert [c.field_name for c in commitments] == ["childName", "dob"]
        assert root == aggregate(commitments)

    def test_same_inputs_same_root(self):
        values = {"dob": "2023-05-15", "childName": "Aarav"}
        blindings = {"dob": BLIND_A, "childName": BLIND_B}
        _, r1 = FieldCommitmentBuilder().build(values, blindings)
        _, r2 = FieldCommitmentBuilder().build(dict(reversed(list(values.items()))), blindings)
        assert r1 == r2

    def test_mismatched_keys_rejected(self):
        with pytest.raises(ValueError, match="disagree"):
            FieldCommitmentBuilder().build({"a": 1, "b": 2}, {"a": BLIND_A})
