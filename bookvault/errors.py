class ProtocolError(Exception):
    """
    Base class for errors raised while driving a purchase session.
    `code` is the WebSocket close code, `reason` a fixed client-facing string.
    """

    code = 1011
    reason = "internal error"
    fatal = True

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class Unauthorized(ProtocolError):
    code = 4401
    reason = "unauthorized"


class ProofRejected(ProtocolError):
    code = 4403
    reason = "proof rejected"


class Timeout(ProtocolError):
    code = 4408
    reason = "payment confirmation timed out"


class InvalidState(ProtocolError):
    code = 4409
    reason = "invalid purchase state"


class AlreadyUsed(ProtocolError):
    code = 4410
    reason = "proof already used"


class RoundMismatch(ProtocolError):
    code = 4412
    reason = "oblivious transfer out of sync"


class InvalidPoint(ProtocolError, ValueError):
    code = 4422
    reason = "invalid public key"


class InvalidIndex(ProtocolError):
    code = 4404
    reason = "invalid item index"
    fatal = False


class MalformedMessage(ProtocolError):
    code = 1003
    reason = "malformed message"


class PersistenceFailure(ProtocolError):
    code = 1011
    reason = "purchase state could not be saved"


class AuthenticationFailed(Exception):
    """AEAD tag check failed. Raised for wrong keys and corrupted blobs alike."""

    def __init__(self):
        super().__init__("decryption failed")
