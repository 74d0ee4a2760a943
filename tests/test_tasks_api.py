# tests/test_tasks_api.py
# PURPOSE: list-scoped task CRUD, ordering per recurrence class, partial patch
# semantics, ledger re-arming and the cross-list view.

from datetime import datetime, timezone
from typing import Dict

import pytest

from collablist import ledger
from collablist.db_models import TaskDB


@pytest.fixture()
def owner_and_list(make_user, make_list):
    alice = make_user("alice")
    return alice, make_list(alice)


def _create(client, user, list_id, **fields) -> Dict:
    r = client.post(f"/lists/{list_id}/tasks", json=fields, headers=user.headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_create_defaults_and_location(client, owner_and_list):
    alice, lst = owner_and_list
    r = client.post(f"/lists/{lst['id']}/tasks", json={"text": "Buy milk"}, headers=alice.headers)
    assert r.status_code == 201
    task = r.json()
    assert r.headers["Location"] == f"/lists/{lst['id']}/tasks/{task['id']}"
    assert task["listId"] == lst["id"]
    assert task["userId"] == alice.id
    assert task["completed"] is False
    assert task["priority"] == "medium"
    assert task["category"] == "General"
    assert task["repeat"] is None
    assert task["order"] == 1


def test_payload_list_id_is_ignored(client, make_user, make_list, owner_and_list):
    alice, lst = owner_and_list
    other = make_list(alice, "Other")
    task = _create(client, alice, lst["id"], text="stay", listId=other["id"])
    assert task["listId"] == lst["id"]

    r = client.put(
        f"/lists/{lst['id']}/tasks/{task['id']}",
        json={"listId": other["id"], "text": "still here"},
        headers=alice.headers,
    )
    assert r.status_code == 200
    assert r.json()["listId"] == lst["id"]


def test_task_from_other_list_is_not_found(client, make_user, make_list, owner_and_list):
    alice, lst = owner_and_list
    bob = make_user("bob")
    bobs = make_list(bob, "Bob's")
    foreign = _create(client, bob, bobs["id"], text="secret")

    # alice owns lst but the task lives in bob's list
    for method in ("put", "delete"):
        kwargs = {"json": {"text": "hijack"}} if method == "put" else {}
        r = getattr(client, method)(f"/lists/{lst['id']}/tasks/{foreign['id']}", headers=alice.headers, **kwargs)
        assert r.status_code == 404


def test_viewer_cannot_write(client, make_user, owner_and_list, share):
    alice, lst = owner_and_list
    vic = make_user("vic")
    share(alice, lst["id"], vic, "viewer")
    assert client.get(f"/lists/{lst['id']}/tasks", headers=vic.headers).status_code == 200
    r = client.post(f"/lists/{lst['id']}/tasks", json={"text": "x"}, headers=vic.headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Insufficient permissions"


def test_order_is_per_recurrence_class(client, owner_and_list):
    alice, lst = owner_and_list
    a = _create(client, alice, lst["id"], text="a")
    r1 = _create(client, alice, lst["id"], text="r1", repeat="daily", due="2030-01-01T08:00:00Z")
    b = _create(client, alice, lst["id"], text="b")
    r2 = _create(client, alice, lst["id"], text="r2", repeat="weekly", due="2030-01-01T08:00:00Z")
    assert (a["order"], b["order"]) == (1, 2)
    assert (r1["order"], r2["order"]) == (1, 2)


def test_empty_repeat_means_not_recurring(client, owner_and_list):
    alice, lst = owner_and_list
    task = _create(client, alice, lst["id"], text="once", repeat="")
    assert task["repeat"] is None


def test_class_change_appends_to_new_class(client, owner_and_list):
    alice, lst = owner_and_list
    a = _create(client, alice, lst["id"], text="a")
    _create(client, alice, lst["id"], text="r1", repeat="daily", due="2030-01-01T08:00:00Z")
    r = client.put(f"/lists/{lst['id']}/tasks/{a['id']}", json={"repeat": "monthly"}, headers=alice.headers)
    assert r.status_code == 200
    assert r.json()["repeat"] == "monthly"
    assert r.json()["order"] == 2


def test_partial_patch_keeps_other_fields(client, owner_and_list):
    alice, lst = owner_and_list
    task = _create(client, alice, lst["id"], text="write report", priority="high", category="Work")
    url = f"/lists/{lst['id']}/tasks/{task['id']}"

    # two editors touching disjoint fields: neither loses the other's change
    client.put(url, json={"completed": True}, headers=alice.headers)
    r = client.patch(url, json={"category": "Office"}, headers=alice.headers)
    body = r.json()
    assert body["completed"] is True
    assert body["category"] == "Office"
    assert body["text"] == "write report"
    assert body["priority"] == "high"


def test_update_unknown_task_is_404(client, owner_and_list):
    alice, lst = owner_and_list
    r = client.put(f"/lists/{lst['id']}/tasks/9999", json={"text": "x"}, headers=alice.headers)
    assert r.status_code == 404
    assert r.json()["error"] == "Task not found"


def _claim(session_factory, task, due):
    with session_factory() as db:
        assert ledger.claim(db, task_id=task["id"], list_id=task["listId"], due=due, stage="15min")


def _slots(session_factory, task_id):
    with session_factory() as db:
        return len(ledger.entries_for_task(db, task_id))


def test_due_change_clears_ledger(client, session_factory, owner_and_list):
    alice, lst = owner_and_list
    task = _create(client, alice, lst["id"], text="call", due="2030-05-01T09:00:00Z")
    _claim(session_factory, task, datetime(2030, 5, 1, 9, tzinfo=timezone.utc))
    url = f"/lists/{lst['id']}/tasks/{task['id']}"

    # same instant written differently: ledger kept
    client.put(url, json={"due": "2030-05-01T11:00:00+02:00", "text": "call mum"}, headers=alice.headers)
    assert _slots(session_factory, task["id"]) == 1

    # no due in the payload: ledger kept
    client.put(url, json={"completed": False}, headers=alice.headers)
    assert _slots(session_factory, task["id"]) == 1

    client.put(url, json={"due": "2030-05-01T10:00:00Z"}, headers=alice.headers)
    assert _slots(session_factory, task["id"]) == 0


def test_completing_recurring_task_stamps_last_completed(client, owner_and_list):
    alice, lst = owner_and_list
    task = _create(client, alice, lst["id"], text="gym", repeat="daily", due="2030-01-01T07:00:00Z")
    assert task["lastCompletedAt"] is None
    r = client.put(f"/lists/{lst['id']}/tasks/{task['id']}", json={"completed": True}, headers=alice.headers)
    assert r.json()["lastCompletedAt"] is not None


def test_delete_task(client, session_factory, owner_and_list):
    alice, lst = owner_and_list
    task = _create(client, alice, lst["id"], text="bye", due="2030-01-01T07:00:00Z")
    _claim(session_factory, task, datetime(2030, 1, 1, 7, tzinfo=timezone.utc))
    r = client.delete(f"/lists/{lst['id']}/tasks/{task['id']}", headers=alice.headers)
    assert r.status_code == 204
    assert client.get(f"/lists/{lst['id']}/tasks", headers=alice.headers).json() == []
    assert _slots(session_factory, task["id"]) == 0
    r = client.delete(f"/lists/{lst['id']}/tasks/{task['id']}", headers=alice.headers)
    assert r.status_code == 404


def test_reorder_is_scoped_to_one_class(client, session_factory, owner_and_list):
    alice, lst = owner_and_list
    a = _create(client, alice, lst["id"], text="a")
    b = _create(client, alice, lst["id"], text="b")
    c = _create(client, alice, lst["id"], text="c")
    r1 = _create(client, alice, lst["id"], text="r1", repeat="daily", due="2030-01-01T08:00:00Z")

    r = client.put(
        f"/lists/{lst['id']}/tasks/reorder",
        json={"orderedIds": [c["id"], r1["id"], a["id"], b["id"]]},
        headers=alice.headers,
    )
    assert r.status_code == 200
    orders = {t["id"]: t["order"] for t in r.json()}
    assert orders[c["id"]] == 1
    assert orders[a["id"]] == 2
    assert orders[b["id"]] == 3
    # the recurring id in the payload was ignored
    assert orders[r1["id"]] == 1

    with session_factory() as db:
        assert db.get(TaskDB, r1["id"]).order == 1


def test_reorder_requires_editor(client, make_user, owner_and_list, share):
    alice, lst = owner_and_list
    vic = make_user("vic")
    share(alice, lst["id"], vic, "viewer")
    r = client.put(f"/lists/{lst['id']}/tasks/reorder", json={"orderedIds": []}, headers=vic.headers)
    assert r.status_code == 403


def test_all_tasks_across_lists(client, make_user, make_list, share):
    alice, bob, carol = make_user("alice"), make_user("bob"), make_user("carol")
    home = make_list(alice, "Home")
    work = make_list(bob, "Work")
    share(bob, work["id"], alice, "viewer")
    hidden = make_list(carol, "Hidden")
    _create(client, alice, home["id"], text="dishes")
    _create(client, bob, work["id"], text="deploy")
    _create(client, carol, hidden["id"], text="not for alice")

    r = client.get("/tasks/all", headers=alice.headers)
    assert r.status_code == 200
    got = {(t["text"], t["listName"]) for t in r.json()}
    assert got == {("dishes", "Home"), ("deploy", "Work")}


def test_activity_push_goes_to_members(client, make_user, owner_and_list, share, push_sender):
    alice, lst = owner_and_list
    bob = make_user("bob")
    share(alice, lst["id"], bob, "editor")
    sub = {"endpoint": "https://push.example/bob", "keys": {"p256dh": "k", "auth": "a"}}
    assert client.post("/subscriptions", json=sub, headers=bob.headers).status_code == 201

    _create(client, alice, lst["id"], text="Water plants")
    titles = [(s.user_id, payload["title"]) for s, payload in push_sender.sent]
    assert (bob.id, "New Task Added") in titles
