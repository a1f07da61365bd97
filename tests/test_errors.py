import pytest

from multisig.multisig_core import errors
from multisig.multisig_core.errors import CeremonyError, InvalidState, SessionExpired


@pytest.mark.parametrize("cls, code, status", [
    (errors.InvalidMnemonic, "MSIG_E001", 400),
    (errors.SigningUnavailable, "MSIG_E002", 503),
    (errors.InvalidPolicy, "MSIG_E100", 400),
    (errors.NotFound, "MSIG_E101", 404),
    (errors.UnauthorizedKey, "MSIG_E200", 403),
    (errors.InvalidSignature, "MSIG_E201", 422),
    (errors.InvalidState, "MSIG_E300", 409),
    (errors.SessionExpired, "MSIG_E301", 409),
    (errors.InvariantViolation, "MSIG_E900", 500),
])
def test_codes_and_statuses(cls, code, status):
    assert issubclass(cls, CeremonyError)
    assert (cls.code, cls.status_code) == (code, status)


def test_codes_are_unique():
    codes = [getattr(errors, name).code for name in errors.__all__]
    assert len(codes) == len(set(codes))


def test_message_and_dict():
    e = errors.NotFound("abc")
    assert str(e) == "[MSIG_E101] no such session: abc"
    assert e.to_dict() == {"code": "MSIG_E101", "error": "no such session", "context": "abc"}
    assert str(errors.InvalidPolicy()) == "[MSIG_E100] invalid session policy"


def test_expired_is_a_state_error():
    with pytest.raises(InvalidState):
        raise SessionExpired("s1")
