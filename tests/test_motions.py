"""Motion lifecycle over the JSON API: second, discuss, vote, decide, overturn."""
from types import SimpleNamespace

import pytest

from app.gavel import auth, create_app
from app.gavel.models import Base


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    auth._login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


class _Member:
    def __init__(self, app, email, name):
        self.client = app.test_client()
        r = self.client.post("/auth/register", json={"email": email, "password": "password123", "display_name": name})
        assert r.status_code == 201, r.json
        self.id = r.json["user"]["id"]
        self.csrf = r.json["csrf_token"]

    def get(self, path):
        return self.client.get(path)

    def post(self, path, json=None):
        return self.client.post(path, json=json, headers={"X-CSRF-Token": self.csrf})

    def delete(self, path):
        return self.client.delete(path, headers={"X-CSRF-Token": self.csrf})


@pytest.fixture()
def board(app):
    """Owner, two members and an outsider; committee allows anonymous votes."""
    owner = _Member(app, "owner@example.com", "Olive")
    alice = _Member(app, "alice@example.com", "Alice")
    bob = _Member(app, "bob@example.com", "Bob")
    outsider = _Member(app, "eve@example.com", "Eve")

    r = owner.post("/committees/", json={"name": "Board", "settings": {"allow_anonymous_voting": True}})
    cid = r.json["committee"]["id"]
    for m in (alice, bob):
        assert owner.post(f"/committees/{cid}/members", json={"user_id": m.id}).status_code == 201

    return SimpleNamespace(
        owner=owner, alice=alice, bob=bob, outsider=outsider, cid=cid, base=f"/committees/{cid}/motions"
    )


def _propose(member, base, **payload):
    payload.setdefault("title", "Buy new chairs")
    r = member.post(f"{base}/", json=payload)
    assert r.status_code == 201, r.json
    return r.json["motion"]


def test_create_motion_resolves_committee_defaults(board):
    m = _propose(board.alice, board.base, description="Ours are broken", type="Main Motion")
    assert m["status"] == "active"
    assert m["type"] == "Main"
    assert m["kind"] == "standard"
    assert m["threshold"] == "Simple Majority"
    assert m["second_required"] is True
    assert m["allow_anonymous"] is True
    assert m["requires_discussion"] is True
    assert m["tally"] == {"yes": 0, "no": 0, "abstain": 0}
    assert m["evaluation"] == {"required": 1, "passing": False, "total": 0}
    assert m["creator_display_name"] == "Alice"


def test_create_motion_validation(board):
    base = board.base
    assert board.alice.post(f"{base}/", json={"title": "x", "type": "Secret"}).status_code == 400
    assert board.alice.post(f"{base}/", json={"title": "x", "threshold": "most"}).status_code == 400
    assert board.alice.post(f"{base}/", json={"title": "x", "kind": "sub"}).status_code == 400
    r = board.alice.post(f"{base}/", json={"title": "x", "kind": "overturn", "related_motion_id": 1})
    assert r.status_code == 400
    assert r.json["error"] == "validation_error"
    assert board.outsider.post(f"{base}/", json={"title": "x"}).status_code == 403

    m = board.alice.post(f"{base}/", json={"title": "   "}).json["motion"]
    assert m["title"] == "Untitled Motion"

    special = _propose(board.alice, base, kind="special", requires_discussion=True, threshold="unanimous")
    assert special["requires_discussion"] is False
    assert special["threshold"] == "Unanimous"

    sub = _propose(board.bob, base, kind="sub", parent_motion_id=special["id"], title="Amend")
    assert sub["parent_motion_id"] == special["id"]


def test_second_rules(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}/second"

    r = board.alice.post(url)
    assert r.status_code == 409
    assert r.json["error"] == "precondition_failed"

    r = board.bob.post(url)
    assert r.status_code == 200
    assert r.json["motion"]["seconded"] is True
    assert r.json["motion"]["seconded_by_name"] == "Bob"

    # a repeat second changes nothing
    r = board.owner.post(url)
    assert r.status_code == 200
    assert r.json["motion"]["seconded_by_user_id"] == board.bob.id

    assert board.outsider.post(url).status_code == 403


def test_voting_flow(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}"

    r = board.bob.post(f"{url}/votes", json={"choice": "yes"})
    assert r.status_code == 409

    board.bob.post(f"{url}/second")
    r = board.bob.post(f"{url}/votes", json={"choice": "yes"})
    assert r.status_code == 200
    assert r.json["tally"] == {"yes": 1, "no": 0, "abstain": 0}
    assert r.json["evaluation"]["passing"] is True

    r = board.bob.post(f"{url}/votes", json={"choice": "no"})
    assert r.json["tally"] == {"yes": 0, "no": 1, "abstain": 0}

    board.alice.post(f"{url}/votes", json={"choice": "yes"})
    r = board.owner.post(f"{url}/votes", json={"choice": "YES"})
    assert r.json["tally"] == {"yes": 2, "no": 1, "abstain": 0}
    assert r.json["evaluation"] == {"required": 2, "passing": True, "total": 3}

    detail = board.bob.get(url).json
    assert detail["my_vote"] == "no"
    assert detail["motion"]["evaluation"]["passing"] is True
    assert detail["decision"] is None

    assert board.bob.post(f"{url}/votes", json={"choice": "maybe"}).status_code == 400
    assert board.outsider.post(f"{url}/votes", json={"choice": "yes"}).status_code == 403
    assert board.bob.post(f"{board.base}/999/votes", json={"choice": "yes"}).status_code == 404


def test_anonymous_votes_hide_voter(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}"
    board.bob.post(f"{url}/second")

    board.bob.post(f"{url}/votes", json={"choice": "no", "anonymous": True})
    board.alice.post(f"{url}/votes", json={"choice": "yes"})

    votes = board.owner.get(f"{url}/votes").json["votes"]
    by_choice = {v["choice"]: v for v in votes}
    assert by_choice["no"]["voter_user_id"] is None
    assert by_choice["no"]["voter_display_name"] is None
    assert by_choice["yes"]["voter_user_id"] == board.alice.id


def test_replies(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}/replies"

    r = board.bob.post(url, json={"text": "Too expensive", "stance": "con"})
    assert r.status_code == 409

    board.bob.post(f"{board.base}/{m['id']}/second")
    r = board.bob.post(url, json={"text": "Too expensive", "stance": "con"})
    assert r.status_code == 201
    assert r.json["reply"]["author_display_name"] == "Bob"

    assert board.bob.post(url, json={"text": "   "}).status_code == 400
    assert board.bob.post(url, json={"text": "hmm", "stance": "angry"}).status_code == 400

    replies = board.alice.get(url).json["replies"]
    assert [(x["text"], x["stance"]) for x in replies] == [("Too expensive", "con")]


def test_status_transitions(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}"

    # creators cannot decide their own motion
    assert board.alice.post(f"{url}/close").status_code == 403
    # approve before close is not a legal edge
    r = board.owner.post(f"{url}/approve")
    assert r.status_code == 409
    assert r.json["error"] == "invalid_transition"

    r = board.owner.post(f"{url}/close")
    assert r.status_code == 200
    assert r.json["motion"]["status"] == "closed"
    assert r.json["motion"]["closed_at"]

    r = board.bob.post(f"{url}/votes", json={"choice": "yes"})
    assert r.status_code == 409

    r = board.owner.post(f"{url}/deny")
    assert r.json["motion"]["status"] == "denied"

    for action in ("close", "approve", "deny"):
        r = board.owner.post(f"{url}/{action}")
        assert r.status_code == 409
        assert r.json["error"] == "invalid_transition"
    assert board.owner.delete(url).status_code == 409


def test_delete_rights(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}"

    r = board.bob.delete(url)
    assert r.status_code == 403
    assert r.json["error"] == "unauthorized"

    r = board.alice.delete(url)
    assert r.status_code == 200
    assert r.json["motion"]["status"] == "deleted"

    listed = board.owner.get(f"{board.base}/").json["motions"]
    assert m["id"] not in [x["id"] for x in listed]
    deleted = board.owner.get(f"{board.base}/?status=deleted").json["motions"]
    assert [x["id"] for x in deleted] == [m["id"]]

    other = _propose(board.bob, board.base, title="Second item")
    assert board.owner.delete(f"{board.base}/{other['id']}").status_code == 200


def test_decision_and_overturn(board):
    m = _propose(board.alice, board.base)
    url = f"{board.base}/{m['id']}"
    board.bob.post(f"{url}/second")
    board.bob.post(f"{url}/replies", json={"text": "Worth it", "stance": "pro"})
    board.alice.post(f"{url}/votes", json={"choice": "yes"})
    board.owner.post(f"{url}/votes", json={"choice": "yes"})
    board.bob.post(f"{url}/votes", json={"choice": "no"})

    r = board.owner.post(f"{url}/decision", json={"summary": "Chairs bought"})
    assert r.status_code == 409

    board.owner.post(f"{url}/close")
    assert board.alice.post(f"{url}/decision", json={"summary": "x"}).status_code == 403

    r = board.owner.post(
        f"{url}/decision",
        json={"summary": "Chairs bought", "pros": "comfort\n\nposture", "cons": ["cost"], "recording_url": " "},
    )
    assert r.status_code == 201
    d = r.json["decision"]
    assert d["pros"] == ["comfort", "posture"]
    assert d["cons"] == ["cost"]
    assert d["recording_url"] is None
    assert [x["text"] for x in d["discussion_snapshot"]] == ["Worth it"]
    assert board.owner.post(f"{url}/decision", json={"summary": "again"}).status_code == 409

    # only adopted motions can be overturned
    assert board.alice.post(f"{url}/overturn", json={"title": "Undo"}).status_code == 409
    board.owner.post(f"{url}/approve")

    assert board.bob.post(f"{url}/overturn", json={"title": "Undo"}).status_code == 403
    r = board.alice.post(f"{url}/overturn", json={"title": "Return the chairs"})
    assert r.status_code == 201
    o = r.json["motion"]
    assert o["kind"] == "overturn"
    assert o["type"] == "Incidental"
    assert o["related_motion_id"] == m["id"]
    assert o["requires_discussion"] is True

    ourl = f"{board.base}/{o['id']}"
    board.owner.post(f"{ourl}/close")
    board.owner.post(f"{ourl}/approve")

    decision = board.alice.get(url).json["decision"]
    assert decision["is_overturned"] is True
    assert decision["overturn_motion_id"] == o["id"]
    assert decision["overturned_at"]
