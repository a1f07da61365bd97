# multisig_core/__init__.py
from .custody import KeyMaterial, SecretBox, derive_identity, sign, public_identifier, message_digest
from .verifier import verify, normalize_public_key
from .session import SessionState, SignatureShare, SigningSession, CeremonyRecord
from .registry import SessionRegistry
from .orchestrator import Orchestrator
from .errors import (CeremonyError, InvalidMnemonic, SigningUnavailable, InvalidPolicy,
                     UnauthorizedKey, InvalidSignature, InvalidState, SessionExpired,
                     NotFound, InvariantViolation)
