# multisig_core/errors.py
"""
Error taxonomy of the signing ceremony engine.

Every error carries a stable code and the HTTP status the coordinator maps it
to. All of them are recoverable at the caller's discretion.
"""

from typing import Optional

__all__ = [
    "CeremonyError",
    "InvalidMnemonic",
    "SigningUnavailable",
    "InvalidPolicy",
    "UnauthorizedKey",
    "InvalidSignature",
    "InvalidState",
    "SessionExpired",
    "NotFound",
    "InvariantViolation",
]


class CeremonyError(Exception):
    """Base class for all ceremony engine errors."""
    code = "MSIG_E000"
    status_code = 500
    message = "ceremony engine error"

    def __init__(self, context: Optional[str] = None):
        self.context = context
        full_msg = f"[{self.code}] {self.message}"
        if context:
            full_msg += f": {context}"
        super().__init__(full_msg)

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message, "context": self.context}


# Key custody (E0xx)
class InvalidMnemonic(CeremonyError):
    code = "MSIG_E001"
    status_code = 400
    message = "mnemonic or derivation input is invalid"


class SigningUnavailable(CeremonyError):
    code = "MSIG_E002"
    status_code = 503
    message = "secret key material has been released"


# Session policy (E1xx)
class InvalidPolicy(CeremonyError):
    code = "MSIG_E100"
    status_code = 400
    message = "invalid session policy"


class NotFound(CeremonyError):
    code = "MSIG_E101"
    status_code = 404
    message = "no such session"


# Contributions (E2xx)
class UnauthorizedKey(CeremonyError):
    code = "MSIG_E200"
    status_code = 403
    message = "public key is not authorized for this session"


class InvalidSignature(CeremonyError):
    code = "MSIG_E201"
    status_code = 422
    message = "signature does not verify"


# Lifecycle (E3xx)
class InvalidState(CeremonyError):
    code = "MSIG_E300"
    status_code = 409
    message = "session is in a terminal state"


class SessionExpired(InvalidState):
    code = "MSIG_E301"
    message = "session deadline has passed"


# Internal (E9xx)
class InvariantViolation(CeremonyError):
    code = "MSIG_E900"
    status_code = 500
    message = "session invariant violated"
