import secrets
import sys
from pathlib import Path

import pytest
from py_ecc.optimized_bn128 import G1, G2, curve_order, multiply, normalize

# Ensure project root is on sys.path when pytest runs from elsewhere.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _scalar() -> int:
    return secrets.randbelow(curve_order - 1) + 1


def _coord(value) -> str:
    return str(value.n if hasattr(value, "n") else int(value))


def _g1_json(k: int):
    x, y = normalize(multiply(G1, k))
    return [_coord(x), _coord(y), "1"]


def _g2_json(k: int):
    x, y = normalize(multiply(G2, k))
    return [[_coord(c) for c in x.coeffs], [_coord(c) for c in y.coeffs], ["1", "0"]]


class Groth16Kit:
    """
    Synthetic Groth16 setup built from known trapdoor scalars.
    Any public-signal vector can be "proven": pick a and c, then solve
    a*b = alpha*beta + x*gamma + c*delta for b.
    """

    def __init__(self, n_public: int = 3):
        self.alpha, self.beta, self.gamma, self.delta = (_scalar() for _ in range(4))
        self.ic = [_scalar() for _ in range(n_public + 1)]
        self.vkey = {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": n_public,
            "vk_alpha_1": _g1_json(self.alpha),
            "vk_beta_2": _g2_json(self.beta),
            "vk_gamma_2": _g2_json(self.gamma),
            "vk_delta_2": _g2_json(self.delta),
            "IC": [_g1_json(k) for k in self.ic],
        }

    def prove(self, public_signals):
        x = self.ic[0]
        for signal, k in zip(public_signals, self.ic[1:]):
            x = (x + int(signal) * k) % curve_order
        a, c = _scalar(), _scalar()
        rhs = (self.alpha * self.beta + x * self.gamma + c * self.delta) % curve_order
        b = rhs * pow(a, -1, curve_order) % curve_order
        return {
            "pi_a": _g1_json(a),
            "pi_b": _g2_json(b),
            "pi_c": _g1_json(c),
            "protocol": "groth16",
            "curve": "bn128",
        }


@pytest.fixture(scope="session")
def groth16_kit():
    return Groth16Kit()
