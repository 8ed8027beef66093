from datetime import timedelta

import pytest

from chatsync.core.identity import IdentityProvider
from chatsync.core.security import create_access_token, decode_token
from chatsync.utils.exceptions import NotAuthenticatedError


def test_listeners_see_every_change_once():
    identity = IdentityProvider()
    changes = []
    identity.listen(changes.append)

    identity.sign_in("alice")
    identity.sign_in("alice")
    identity.sign_in("bob")
    identity.sign_out()

    assert changes == ["alice", "bob", None]
    assert not identity.is_authenticated


def test_cancelled_listener_is_not_called():
    identity = IdentityProvider()
    changes = []
    listener = identity.listen(changes.append)
    listener.cancel()

    identity.sign_in("alice")

    assert changes == []


def test_failing_listener_does_not_block_others():
    identity = IdentityProvider()
    changes = []

    def broken(user_id):
        raise RuntimeError("boom")

    identity.listen(broken)
    identity.listen(changes.append)
    identity.sign_in("alice")

    assert changes == ["alice"]
    assert identity.current_user_id == "alice"


def test_sign_in_with_token():
    identity = IdentityProvider()
    token = create_access_token("carol")

    assert identity.sign_in_with_token(token) == "carol"
    assert identity.current_user_id == "carol"
    assert decode_token(token)["type"] == "access"


def test_expired_or_forged_tokens_are_rejected():
    identity = IdentityProvider()
    expired = create_access_token("carol", expires_delta=timedelta(minutes=-5))

    with pytest.raises(NotAuthenticatedError):
        identity.sign_in_with_token(expired)
    with pytest.raises(NotAuthenticatedError):
        identity.sign_in_with_token("not-a-token")
    assert identity.current_user_id is None
