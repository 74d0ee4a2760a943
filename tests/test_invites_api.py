# tests/test_invites_api.py
# PURPOSE: redeeming invitation tokens (signature, expiry, addressee, membership).

import pytest

from collablist.security import create_invite_token, verify_invite_token
from collablist.errors import InvalidToken


def test_token_round_trip_carries_list_email_role():
    invite = verify_invite_token(create_invite_token(7, "a@x.com", "editor"))
    assert (invite.list_id, invite.email, invite.role) == (7, "a@x.com", "editor")


def test_wrong_addressee_then_right_one(client, make_user, make_list):
    owner = make_user("owner", "owner@x.com")
    lst = make_list(owner, "Trip")
    a = make_user("a", "a@x.com")
    b = make_user("b", "b@x.com")
    token = create_invite_token(lst["id"], "a@x.com", "editor")

    r = client.post("/invites/accept", json={"token": token}, headers=b.headers)
    assert r.status_code == 403
    assert r.json()["code"] == "EmailMismatch"
    assert r.json()["error"] == "This invitation is not for you"

    with client.websocket_connect(f"/ws?token={a.token}") as ws:
        r = client.post("/invites/accept", json={"token": token}, headers=a.headers)
        assert r.status_code == 200
        body = r.json()
        assert body["message"] == "Successfully joined the list"
        assert {"userId": a.id, "role": "editor"} in body["list"]["members"]

        msg = ws.receive_json()
        assert msg["event"] == "list:memberJoined"
        assert msg["data"] == {"listId": lst["id"], "userId": a.id, "role": "editor"}

    # A second redemption is refused
    r = client.post("/invites/accept", json={"token": token}, headers=a.headers)
    assert r.status_code == 400
    assert r.json()["code"] == "AlreadyMember"


def test_email_match_is_case_insensitive(client, make_user, make_list):
    owner = make_user("owner")
    lst = make_list(owner)
    user = make_user("Casey", "Casey@X.com")
    token = create_invite_token(lst["id"], "casey@x.com", "viewer")
    r = client.post("/invites/accept", json={"token": token}, headers=user.headers)
    assert r.status_code == 200


def test_tampered_token(client, make_user, make_list):
    owner = make_user("owner")
    lst = make_list(owner)
    a = make_user("a", "a@x.com")

    token = create_invite_token(lst["id"], "a@x.com", "editor")
    r = client.post("/invites/accept", json={"token": token[:-2] + "xx"}, headers=a.headers)
    assert r.status_code == 400
    assert r.json()["code"] == "InvalidToken"


def test_expired_token_is_invalid():
    token = create_invite_token(1, "a@x.com", "editor")
    with pytest.raises(InvalidToken):
        verify_invite_token(token, max_age=-1)


def test_invite_for_deleted_list(client, make_user, make_list):
    owner = make_user("owner")
    lst = make_list(owner)
    a = make_user("a", "a@x.com")
    token = create_invite_token(lst["id"], "a@x.com", "editor")
    assert client.delete(f"/lists/{lst['id']}", headers=owner.headers).status_code == 200
    r = client.post("/invites/accept", json={"token": token}, headers=a.headers)
    assert r.status_code == 404
