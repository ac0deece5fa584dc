"""
Groth16 proof verification over BN254 for snarkjs-formatted keys and proofs.

A purchase proof exposes public signals [nullifier, root, commitment] by default.
The commitment is compared against the stored purchase before any pairing work.
"""
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    Z1,
    Z2,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    pairing,
)

from .errors import ProofRejected


@dataclass(frozen=True)
class SignalLayout:
    nullifier: int = 0
    root: Optional[int] = 1
    commitment: int = 2


@dataclass(frozen=True)
class VerifiedClaim:
    nullifier: str
    commitment: str
    root: Optional[str]
    public_signals: Tuple[str, ...]


def _field_int(value: Any, modulus: int) -> int:
    try:
        number = int(str(value), 10)
    except (TypeError, ValueError) as exc:
        raise ProofRejected(f"not a decimal field element: {value!r}") from exc
    if not 0 <= number < modulus:
        raise ProofRejected("field element out of range")
    return number


def _g1(coords: Sequence[Any]):
    x, y, z = (_field_int(c, field_modulus) for c in coords[:3])
    if z == 0:
        return Z1
    point = (FQ(x), FQ(y), FQ(z))
    if not is_on_curve(point, b):
        raise ProofRejected("G1 point not on curve")
    return point


def _g2(coords: Sequence[Sequence[Any]]):
    x, y, z = ([_field_int(c, field_modulus) for c in pair[:2]] for pair in coords[:3])
    if z == [0, 0]:
        return Z2
    point = (FQ2(x), FQ2(y), FQ2(z))
    if not is_on_curve(point, b2):
        raise ProofRejected("G2 point not on curve")
    if not is_inf(multiply(point, curve_order)):
        raise ProofRejected("G2 point outside the prime-order subgroup")
    return point


class VerificationKey:
    def __init__(self, alpha1, beta2, gamma2, delta2, ic: List):
        self.alpha1 = alpha1
        self.beta2 = beta2
        self.gamma2 = gamma2
        self.delta2 = delta2
        self.ic = ic

    @property
    def public_input_count(self) -> int:
        return len(self.ic) - 1

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VerificationKey":
        if data.get("protocol", "groth16") != "groth16":
            raise ValueError(f"unsupported proof protocol {data.get('protocol')}")
        try:
            return cls(
                alpha1=_g1(data["vk_alpha_1"]),
                beta2=_g2(data["vk_beta_2"]),
                gamma2=_g2(data["vk_gamma_2"]),
                delta2=_g2(data["vk_delta_2"]),
                ic=[_g1(p) for p in data["IC"]],
            )
        except ProofRejected as exc:
            raise ValueError(f"invalid verification key: {exc}") from exc

    @classmethod
    def load(cls, path: Path | str) -> "VerificationKey":
        return cls.from_json(json.loads(Path(path).read_text()))


class Groth16Verifier:
    """Stateless; safe to share between concurrent sessions."""

    def __init__(self, vkey: VerificationKey, layout: SignalLayout = SignalLayout()):
        self.vkey = vkey
        self.layout = layout

    def verify(self, proof: Dict[str, Any], public_signals: Sequence[Any], expected_commitment: str) -> VerifiedClaim:
        signals = [_field_int(s, curve_order) for s in public_signals]
        if len(signals) != self.vkey.public_input_count:
            raise ProofRejected("unexpected number of public signals")
        if signals[self.layout.commitment] != _field_int(expected_commitment, curve_order):
            raise ProofRejected("commitment mismatch")
        if not self.check_pairing(proof, signals):
            raise ProofRejected("pairing check failed")
        as_text = tuple(str(s) for s in signals)
        return VerifiedClaim(
            nullifier=as_text[self.layout.nullifier],
            commitment=as_text[self.layout.commitment],
            root=as_text[self.layout.root] if self.layout.root is not None else None,
            public_signals=as_text,
        )

    def check_pairing(self, proof: Dict[str, Any], signals: Sequence[int]) -> bool:
        """e(A, B) == e(alpha, beta) * e(vk_x, gamma) * e(C, delta)."""
        try:
            proof_a = _g1(proof["pi_a"])
            proof_b = _g2(proof["pi_b"])
            proof_c = _g1(proof["pi_c"])
        except (KeyError, TypeError, IndexError, ValueError) as exc:
            raise ProofRejected("malformed proof") from exc

        vk_x = self.vkey.ic[0]
        for signal, ic_point in zip(signals, self.vkey.ic[1:]):
            vk_x = add(vk_x, multiply(ic_point, signal))

        product = (
            pairing(proof_b, neg(proof_a), final_exponentiate=False)
            * pairing(self.vkey.beta2, self.vkey.alpha1, final_exponentiate=False)
            * pairing(self.vkey.gamma2, vk_x, final_exponentiate=False)
            * pairing(self.vkey.delta2, proof_c, final_exponentiate=False)
        )
        return final_exponentiate(product) == FQ12.one()
