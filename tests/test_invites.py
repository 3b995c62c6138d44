import invites
import projects
from invites import InviteState


def test_unknown_code_is_invalid():
    outcome = invites.resolve_invite("missing", "u1")
    assert outcome.state == InviteState.INVALID
    assert outcome.error == "Invalid invite link"


def test_member_is_redirected_to_project(project):
    outcome = invites.resolve_invite(project["inviteCode"], project["createdBy"])
    assert outcome.state == InviteState.ALREADY_MEMBER
    assert outcome.redirect == f"/dashboard/projects/{project['id']}"


def test_non_member_and_anonymous_get_offer(project, user_factory):
    for uid in (user_factory(), None):
        outcome = invites.resolve_invite(project["inviteCode"], uid)
        assert outcome.state == InviteState.OFFERING
        assert outcome.to_dict()["project"] == {
            "id": project["id"],
            "name": "CS101 Demo",
            "course": "CS101",
            "memberCount": 1,
        }


def test_join_without_session_is_deferred(project):
    outcome = invites.join(project["inviteCode"], None)
    assert outcome.state == InviteState.DEFERRED
    assert outcome.redirect == "/signup"
    assert invites.join(project["inviteCode"], None, auth_path="/login").redirect == "/login"
    assert projects.get_project(project["id"])["members"] == [project["createdBy"]]


def test_join_adds_member(project, user_factory):
    uid = user_factory()
    outcome = invites.join(project["inviteCode"], uid)
    assert outcome.state == InviteState.JOINED
    assert outcome.redirect == f"/dashboard/projects/{project['id']}"
    assert projects.get_project(project["id"])["members"] == [project["createdBy"], uid]


def test_join_failure_is_reported(project, user_factory, monkeypatch):
    monkeypatch.setattr(projects, "add_member", lambda project_id, user_id: False)
    outcome = invites.join(project["inviteCode"], user_factory())
    assert outcome.state == InviteState.JOIN_FAILED
    assert outcome.error == "Failed to join project"
