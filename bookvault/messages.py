"""
Purchase protocol messages. Every frame is a JSON object tagged by `type`.
Binary values (public keys, ciphertexts) travel as lowercase hex.
"""
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import MalformedMessage
from .ot import RoundChallenge


# Inbound (buyer -> server)


class Init(BaseModel):
    type: Literal["INIT"] = "INIT"
    token: str


class SubmitProof(BaseModel):
    type: Literal["SUBMIT_PROOF"] = "SUBMIT_PROOF"
    proof: Dict[str, Any]
    public_signals: List[str]


class OtAckBegin(BaseModel):
    type: Literal["OT_ACK_BEGIN"] = "OT_ACK_BEGIN"


class OtRoundReply(BaseModel):
    type: Literal["OT_ROUND_REPLY"] = "OT_ROUND_REPLY"
    round: int
    public_key: str


class OtRoundsComplete(BaseModel):
    type: Literal["OT_ROUNDS_COMPLETE"] = "OT_ROUNDS_COMPLETE"


class RequestDownloadRef(BaseModel):
    type: Literal["REQUEST_DOWNLOAD_REF"] = "REQUEST_DOWNLOAD_REF"
    index: int


class DownloadAck(BaseModel):
    type: Literal["DOWNLOAD_ACK"] = "DOWNLOAD_ACK"


InboundMessage = Annotated[
    Union[Init, SubmitProof, OtAckBegin, OtRoundReply, OtRoundsComplete, RequestDownloadRef, DownloadAck],
    Field(discriminator="type"),
]

INBOUND_TYPES = (Init, SubmitProof, OtAckBegin, OtRoundReply, OtRoundsComplete, RequestDownloadRef, DownloadAck)


# Outbound (server -> buyer)


class ReadyForProof(BaseModel):
    type: Literal["READY_FOR_PROOF"] = "READY_FOR_PROOF"


class OtBegin(BaseModel):
    type: Literal["OT_BEGIN"] = "OT_BEGIN"
    item_count: int


class OtRoundBegin(BaseModel):
    type: Literal["OT_ROUND_BEGIN"] = "OT_ROUND_BEGIN"
    round: int


class OtRoundChallenge(BaseModel):
    type: Literal["OT_ROUND_CHALLENGE"] = "OT_ROUND_CHALLENGE"
    round: int
    g0: str
    g1: str
    e0: str
    e1: str

    @classmethod
    def from_challenge(cls, challenge: RoundChallenge) -> "OtRoundChallenge":
        return cls(
            round=challenge.round,
            g0=challenge.g0.hex(),
            g1=challenge.g1.hex(),
            e0=challenge.e0.hex(),
            e1=challenge.e1.hex(),
        )

    def to_challenge(self) -> RoundChallenge:
        return RoundChallenge(
            round=self.round,
            g0=bytes.fromhex(self.g0),
            g1=bytes.fromhex(self.g1),
            e0=bytes.fromhex(self.e0),
            e1=bytes.fromhex(self.e1),
        )


class OtDeliver(BaseModel):
    type: Literal["OT_DELIVER"] = "OT_DELIVER"
    encrypted_secrets: List[str]


class DownloadRef(BaseModel):
    type: Literal["DOWNLOAD_REF"] = "DOWNLOAD_REF"
    url: str
    expires_in: int


class ErrorNotice(BaseModel):
    type: Literal["ERROR"] = "ERROR"
    code: int
    reason: str


OutboundMessage = Annotated[
    Union[ReadyForProof, OtBegin, OtRoundBegin, OtRoundChallenge, OtDeliver, DownloadRef, ErrorNotice],
    Field(discriminator="type"),
]

_inbound = TypeAdapter(InboundMessage)
_outbound = TypeAdapter(OutboundMessage)


def parse_inbound(raw: str | bytes):
    try:
        return _inbound.validate_json(raw)
    except ValidationError as exc:
        raise MalformedMessage(f"unreadable inbound frame: {exc.error_count()} error(s)") from exc


def parse_outbound(raw: str | bytes | Dict[str, Any]):
    try:
        if isinstance(raw, dict):
            return _outbound.validate_python(raw)
        return _outbound.validate_json(raw)
    except ValidationError as exc:
        raise MalformedMessage(f"unreadable outbound frame: {exc.error_count()} error(s)") from exc


def encode(message: BaseModel) -> Dict[str, Any]:
    return message.model_dump(exclude_none=True)


def decode_hex(value: str, what: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        raise MalformedMessage(f"{what} is not hex") from exc
