"""
1-out-of-N oblivious transfer built from ceil(log2 N) rounds of 1-out-of-2 transfer.

The sender draws a pair of random seeds per round and hands the receiver one seed of
each pair. Item i is then encrypted under the XOR of the seeds selected by the bits
of i (bit j set -> seed1 of round j), so the receiver can open exactly the item whose
bit pattern matches the seeds it holds.

Security model: semi-honest. Each round the sender encrypts seed0/seed1 under ECDH
secrets between two fresh sender keys and the single public key the receiver sent.
A receiver that knows the discrete log of that key can compute both secrets, so
obliviousness of a round relies on the receiver building its key through an external
blinding step. The sender does not check this.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from . import crypto
from .errors import AuthenticationFailed, InvalidPoint, RoundMismatch


class OtPhase(str, Enum):
    IDLE = "idle"
    ROUND_IN_PROGRESS = "round_in_progress"
    AWAITING_FINALIZE = "awaiting_finalize"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RoundSeeds:
    seed0: bytes
    seed1: bytes

    def select(self, bit: int) -> bytes:
        return self.seed1 if bit else self.seed0


@dataclass(frozen=True)
class RoundChallenge:
    round: int
    g0: bytes
    g1: bytes
    e0: bytes
    e1: bytes


def choice_bit_count(item_count: int) -> int:
    """ceil(log2(n)), with 0 when a single item needs no selection."""
    if item_count <= 1:
        return 0
    return (item_count - 1).bit_length()


def combine_seeds(seeds: Sequence[bytes]) -> bytes:
    key = bytes(crypto.SEED_SIZE)
    for seed in seeds:
        key = crypto.xor_bytes(key, seed)
    return key


class ObliviousSender:
    """Sender side state for one purchase. Holds every item secret, performs no I/O."""

    def __init__(self, item_secrets: Sequence[bytes], seed_factory: Callable[[], bytes] = crypto.random_seed):
        if not item_secrets:
            raise ValueError("catalog is empty")
        self._secrets: List[bytes] = list(item_secrets)
        self.bit_count = choice_bit_count(len(self._secrets))
        self._seeds: List[RoundSeeds] = [
            RoundSeeds(seed_factory(), seed_factory()) for _ in range(self.bit_count)
        ]
        self.current_round = 0
        self.phase = OtPhase.IDLE

    @property
    def item_count(self) -> int:
        return len(self._secrets)

    def begin(self) -> Optional[int]:
        """Start the transfer. Returns the first round to request, or None if there are no rounds."""
        if self.phase is not OtPhase.IDLE:
            self._fail()
            raise RoundMismatch("transfer already started")
        if self.bit_count == 0:
            self.phase = OtPhase.AWAITING_FINALIZE
            return None
        self.phase = OtPhase.ROUND_IN_PROGRESS
        return self.current_round

    def respond(self, round_index: int, peer_public: bytes) -> RoundChallenge:
        """Answer the receiver's public key for the current round with both encrypted seeds."""
        if self.phase is not OtPhase.ROUND_IN_PROGRESS or round_index != self.current_round:
            self._fail()
            raise RoundMismatch(f"expected round {self.current_round}, got {round_index}")

        seeds = self._seeds[round_index]
        priv0, pub0 = crypto.generate_keypair()
        priv1, pub1 = crypto.generate_keypair()
        try:
            secret0 = crypto.derive_shared_secret(priv0, peer_public)
            secret1 = crypto.derive_shared_secret(priv1, peer_public)
        except InvalidPoint:
            self._fail()
            raise

        challenge = RoundChallenge(
            round=round_index,
            g0=pub0,
            g1=pub1,
            e0=crypto.aead_encrypt(secret0, seeds.seed0),
            e1=crypto.aead_encrypt(secret1, seeds.seed1),
        )
        self.current_round += 1
        if self.current_round == self.bit_count:
            self.phase = OtPhase.AWAITING_FINALIZE
        return challenge

    @property
    def next_round(self) -> Optional[int]:
        if self.phase is OtPhase.ROUND_IN_PROGRESS:
            return self.current_round
        return None

    def item_key(self, index: int) -> bytes:
        return combine_seeds(
            [self._seeds[j].select((index >> j) & 1) for j in range(self.bit_count)]
        )

    def deliver_all(self) -> List[bytes]:
        """Encrypt every item secret under its per-item key. Ends the transfer."""
        if self.phase is not OtPhase.AWAITING_FINALIZE:
            self._fail()
            raise RoundMismatch("rounds are not complete")
        delivered = [
            crypto.aead_encrypt(self.item_key(index), secret)
            for index, secret in enumerate(self._secrets)
        ]
        self.phase = OtPhase.DONE
        self._wipe()
        return delivered

    def abort(self) -> None:
        if self.phase is not OtPhase.DONE:
            self._fail()

    def _fail(self) -> None:
        self.phase = OtPhase.FAILED
        self._wipe()

    def _wipe(self) -> None:
        self._seeds = []
        self._secrets = []


class ObliviousReceiver:
    """Reference receiver used by the buyer client: picks `choice` out of `item_count` items."""

    def __init__(self, item_count: int, choice: int):
        if not 0 <= choice < item_count:
            raise ValueError(f"choice {choice} outside catalog of {item_count}")
        self.item_count = item_count
        self.choice = choice
        self.bit_count = choice_bit_count(item_count)
        self._round_keys = {}
        self._seeds: List[Optional[bytes]] = [None] * self.bit_count

    def choice_bit(self, round_index: int) -> int:
        return (self.choice >> round_index) & 1

    def round_public_key(self, round_index: int) -> bytes:
        priv, pub = crypto.generate_keypair()
        self._round_keys[round_index] = priv
        return pub

    def accept_challenge(self, challenge: RoundChallenge) -> bytes:
        bit = self.choice_bit(challenge.round)
        priv = self._round_keys.pop(challenge.round)
        sender_public = challenge.g1 if bit else challenge.g0
        encrypted = challenge.e1 if bit else challenge.e0
        seed = crypto.aead_decrypt(crypto.derive_shared_secret(priv, sender_public), encrypted)
        self._seeds[challenge.round] = seed
        return seed

    @property
    def complete(self) -> bool:
        return all(seed is not None for seed in self._seeds)

    def item_key(self) -> bytes:
        if not self.complete:
            raise RoundMismatch("missing seeds for some rounds")
        return combine_seeds(self._seeds)

    def recover(self, delivered: Sequence[bytes]) -> bytes:
        """Decrypt the chosen item's secret from the delivered array."""
        if len(delivered) != self.item_count:
            raise AuthenticationFailed()
        return crypto.aead_decrypt(self.item_key(), delivered[self.choice])
