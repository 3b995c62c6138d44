import pytest

import database
import identity
from identity import IdentityError, SessionContext, onboarding_redirect


def test_sign_up_creates_user_and_session():
    user, token = identity.sign_up("Sam@Example.com", "pw-123456", "pw-123456", "Sam", "Lee")

    assert user["email"] == "sam@example.com"
    assert user["profileComplete"] is False
    assert "passwordHash" not in user
    stored = database.get_document("users", user["id"])
    assert stored["passwordHash"] != "pw-123456"
    assert identity.user_for_token(token)["id"] == user["id"]


def test_sign_up_validation():
    with pytest.raises(IdentityError, match="Passwords do not match"):
        identity.sign_up("a@example.com", "one", "two", "A", "B")
    with pytest.raises(IdentityError, match="Invalid email"):
        identity.sign_up("not-an-email", "pw", "pw", "A", "B")

    identity.sign_up("a@example.com", "pw", "pw", "A", "B")
    with pytest.raises(IdentityError) as exc:
        identity.sign_up("a@example.com", "pw", "pw", "A", "B")
    assert exc.value.status_code == 409


def test_sign_in_and_out():
    user, _ = identity.sign_up("a@example.com", "pw", "pw", "A", "B")
    assert identity.sign_in("a@example.com", "wrong") is None
    assert identity.sign_in("nobody@example.com", "pw") is None

    token = identity.sign_in("a@example.com", "pw")
    session = SessionContext.open(token)
    assert session.uid == user["id"]
    assert session.loading is False

    session.close()
    assert session.user is None
    assert identity.user_for_token(token) is None


def test_federated_sign_in_creates_user_once():
    token = identity.sign_in_federated("g@example.com", "Grace Hopper")
    user = identity.user_for_token(token)
    assert (user["firstName"], user["lastName"]) == ("Grace", "Hopper")

    again = identity.user_for_token(identity.sign_in_federated("g@example.com", "Someone Else"))
    assert again["id"] == user["id"]
    assert again["firstName"] == "Grace"


def test_profile_setup_and_username_availability():
    user, token = identity.sign_up("a@example.com", "pw", "pw", "A", "B")
    other, _ = identity.sign_up("b@example.com", "pw", "pw", "B", "C")
    assert not identity.is_profile_complete(user["id"])
    assert identity.is_username_available("ada")

    identity.update_profile(user["id"], "ada", "MIT", "555-0100")

    assert identity.is_profile_complete(user["id"])
    assert not identity.is_username_available("ada")
    with pytest.raises(IdentityError, match="already taken"):
        identity.update_profile(other["id"], "ada", "MIT", "555-0101")
    assert identity.get_user(user["id"])["university"] == "MIT"


def test_anonymous_session():
    session = SessionContext.open(None)
    assert session.user is None
    assert session.uid is None
    assert session.loading is False
    assert onboarding_redirect(session, "/dashboard") is None


def test_onboarding_redirect():
    incomplete = SessionContext()
    incomplete.apply({"id": "u1", "profileComplete": False})
    complete = SessionContext()
    complete.apply({"id": "u2", "profileComplete": True})

    assert onboarding_redirect(incomplete, "/dashboard") == "/profile-setup"
    assert onboarding_redirect(incomplete, "/profile-setup") is None
    assert onboarding_redirect(complete, "/profile-setup") == "/dashboard"
    assert onboarding_redirect(complete, "/dashboard/tasks") is None
