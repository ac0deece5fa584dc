import json
import sys
from pathlib import Path

import pytest

# Ensure project root on sys.path for direct execution.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from py_ecc.optimized_bn128 import FQ2, b2, curve_order, field_modulus  # noqa: E402

from bookvault.errors import ProofRejected  # noqa: E402
from bookvault.proof import Groth16Verifier, SignalLayout, VerificationKey  # noqa: E402

COMMITMENT = "8731923517734213987123"
ROOT_HASH = "1209381209381"


@pytest.fixture(scope="module")
def verifier(groth16_kit):
    return Groth16Verifier(VerificationKey.from_json(groth16_kit.vkey))


def test_valid_proof_yields_claim(groth16_kit, verifier):
    signals = ["42", ROOT_HASH, COMMITMENT]
    claim = verifier.verify(groth16_kit.prove(signals), signals, COMMITMENT)
    assert claim.nullifier == "42"
    assert claim.root == ROOT_HASH
    assert claim.commitment == COMMITMENT
    assert claim.public_signals == tuple(signals)


def test_commitment_mismatch_skips_pairing(groth16_kit, verifier, monkeypatch):
    calls = []
    monkeypatch.setattr(verifier, "check_pairing", lambda *args: calls.append(args) or True)
    signals = ["42", ROOT_HASH, COMMITMENT]
    with pytest.raises(ProofRejected, match="commitment mismatch"):
        verifier.verify(groth16_kit.prove(signals), signals, "999")
    assert calls == []


def test_proof_for_other_signals_is_rejected(groth16_kit, verifier):
    proof = groth16_kit.prove(["41", ROOT_HASH, COMMITMENT])
    with pytest.raises(ProofRejected, match="pairing"):
        verifier.verify(proof, ["42", ROOT_HASH, COMMITMENT], COMMITMENT)


def test_signal_shape_is_enforced(groth16_kit, verifier):
    proof = groth16_kit.prove(["42", ROOT_HASH, COMMITMENT])
    with pytest.raises(ProofRejected):
        verifier.verify(proof, ["42", COMMITMENT], COMMITMENT)
    with pytest.raises(ProofRejected):
        verifier.verify(proof, ["42", ROOT_HASH, str(curve_order + 1)], str(curve_order + 1))
    with pytest.raises(ProofRejected):
        verifier.verify(proof, ["0x2a", ROOT_HASH, COMMITMENT], COMMITMENT)


def test_malformed_proof_points_are_rejected(groth16_kit, verifier):
    signals = ["42", ROOT_HASH, COMMITMENT]
    proof = groth16_kit.prove(signals)
    off_curve = dict(proof, pi_a=["1", "3", "1"])
    with pytest.raises(ProofRejected):
        verifier.verify(off_curve, signals, COMMITMENT)
    with pytest.raises(ProofRejected):
        verifier.verify({"pi_a": proof["pi_a"]}, signals, COMMITMENT)


def _fq2_sqrt(value):
    # p = 3 mod 4, so a square root in FQ2 needs two exponentiations
    a1 = value ** ((field_modulus - 3) // 4)
    alpha = a1 * a1 * value
    x0 = a1 * value
    if alpha == FQ2([field_modulus - 1, 0]):
        return FQ2([0, 1]) * x0
    return (FQ2.one() + alpha) ** ((field_modulus - 1) // 2) * x0


def _twist_point_outside_subgroup():
    k = 1
    while True:
        x = FQ2([k, 1])
        rhs = x ** 3 + b2
        y = _fq2_sqrt(rhs)
        if y * y == rhs:
            return [[str(int(c)) for c in x.coeffs], [str(int(c)) for c in y.coeffs], ["1", "0"]]
        k += 1


def test_g2_point_outside_subgroup_is_rejected(groth16_kit, verifier):
    signals = ["42", ROOT_HASH, COMMITMENT]
    proof = dict(groth16_kit.prove(signals), pi_b=_twist_point_outside_subgroup())
    with pytest.raises(ProofRejected, match="subgroup"):
        verifier.verify(proof, signals, COMMITMENT)


def test_custom_signal_layout(groth16_kit):
    layout = SignalLayout(nullifier=1, root=None, commitment=0)
    verifier = Groth16Verifier(VerificationKey.from_json(groth16_kit.vkey), layout)
    signals = [COMMITMENT, "77", "5"]
    claim = verifier.verify(groth16_kit.prove(signals), signals, COMMITMENT)
    assert claim.nullifier == "77"
    assert claim.root is None


def test_verification_key_load(tmp_path, groth16_kit):
    path = tmp_path / "verification_key.json"
    path.write_text(json.dumps(groth16_kit.vkey))
    vkey = VerificationKey.load(path)
    assert vkey.public_input_count == 3

    broken = dict(groth16_kit.vkey, vk_alpha_1=["1", "3", "1"])
    with pytest.raises(ValueError):
        VerificationKey.from_json(broken)
    with pytest.raises(ValueError):
        VerificationKey.from_json(dict(groth16_kit.vkey, protocol="plonk"))


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-vv", "-s", "--capture=no"]))
