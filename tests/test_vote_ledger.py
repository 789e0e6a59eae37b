"""Service-level tests for the cast-vote transaction and run_transaction."""
import threading
from collections import Counter

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.security import generate_password_hash

from app.gavel import create_app
from app.gavel.db import is_write_conflict, run_transaction, session_scope
from app.gavel.errors import (
    NotFound,
    PreconditionFailed,
    Transient,
    Unauthenticated,
    Unauthorized,
    ValidationError,
)
from app.gavel.identity import Identity
from app.gavel.models import AuditEvent, Base, User
from app.gavel.modules.committees.service import add_member, create_committee
from app.gavel.modules.motions.models import Motion, Vote
from app.gavel.modules.motions.service import (
    cast_vote,
    close_motion,
    create_motion,
    recount_tally,
    second_motion,
)
from app.gavel.modules.motions.tally import Tally


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("TX_MAX_ATTEMPTS", "3")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    with app.app_context():
        yield app


def _user(app, email: str, name: str | None = None) -> Identity:
    with session_scope(app) as s:
        u = User(email=email, password_hash=generate_password_hash("password123"), display_name=name, is_active=True)
        s.add(u)
        s.flush()
        return Identity.from_user(u)


@pytest.fixture()
def board(app):
    """Owner plus three members; one seconded motion awaiting votes."""
    owner = _user(app, "owner@example.com", "Owner")
    voters = [_user(app, f"member{i}@example.com", f"Member {i}") for i in range(3)]
    outsider = _user(app, "outsider@example.com")

    with session_scope(app) as s:
        c = create_committee(s, owner, name="Board", settings={"allow_anonymous_voting": True})
        for v in voters:
            add_member(s, owner, c.id, user_id=v.id)
        m = create_motion(s, voters[0], c.id, title="Buy chairs")
        committee_id, motion_id = c.id, m.id
    second_motion(voters[1], committee_id, motion_id, app=app)

    return {
        "app": app,
        "owner": owner,
        "voters": voters,
        "outsider": outsider,
        "committee_id": committee_id,
        "motion_id": motion_id,
    }


def _stored_tally(app, motion_id: int) -> Tally:
    with session_scope(app) as s:
        return Tally.of(s.get(Motion, motion_id))


def test_first_vote_increments_one_bucket(board):
    app, a = board["app"], board["voters"][0]
    tally = cast_vote(a, board["committee_id"], board["motion_id"], "yes", app=app)
    assert tally == Tally(yes=1, no=0, abstain=0)
    assert _stored_tally(app, board["motion_id"]) == tally


def test_repeated_identical_vote_is_idempotent(board):
    app, a = board["app"], board["voters"][0]
    first = cast_vote(a, board["committee_id"], board["motion_id"], "yes", app=app)
    second = cast_vote(a, board["committee_id"], board["motion_id"], "yes", app=app)
    assert first == second == Tally(1, 0, 0)

    with session_scope(app) as s:
        votes = s.execute(select(Vote).where(Vote.motion_id == board["motion_id"])).scalars().all()
        cast_events = s.execute(select(AuditEvent).where(AuditEvent.action == "vote.cast")).scalars().all()
    assert len(votes) == 1
    assert len(cast_events) == 1


def test_changing_vote_moves_the_count(board):
    app, a = board["app"], board["voters"][0]
    cast_vote(a, board["committee_id"], board["motion_id"], "yes", app=app)
    tally = cast_vote(a, board["committee_id"], board["motion_id"], "no", app=app)
    assert tally == Tally(yes=0, no=1, abstain=0)

    with session_scope(app) as s:
        v = s.execute(select(Vote).where(Vote.voter_user_id == a.id)).scalar_one()
        assert v.choice == "no"
        assert v.updated_at is not None


def test_tally_matches_most_recent_choices(board):
    app = board["app"]
    v0, v1, v2 = board["voters"]
    owner = board["owner"]
    sequence = [
        (v0, "yes"),
        (v1, "no"),
        (v2, "abstain"),
        (v1, "yes"),
        (owner, "no"),
        (v0, "yes"),
        (v2, "no"),
        (v0, "abstain"),
        (owner, "no"),
        (v1, "no"),
    ]
    latest: dict[int, str] = {}
    tally = None
    for voter, choice in sequence:
        tally = cast_vote(voter, board["committee_id"], board["motion_id"], choice, app=app)
        latest[voter.id] = choice

    expected = Counter(latest.values())
    assert tally == Tally(yes=expected["yes"], no=expected["no"], abstain=expected["abstain"])
    assert _stored_tally(app, board["motion_id"]) == tally
    with session_scope(app) as s:
        assert recount_tally(s, board["motion_id"]) == tally


def test_vote_preconditions(board):
    app, cid, mid = board["app"], board["committee_id"], board["motion_id"]
    a = board["voters"][0]

    with pytest.raises(Unauthenticated):
        cast_vote(None, cid, mid, "yes", app=app)
    with pytest.raises(NotFound):
        cast_vote(a, cid, 9999, "yes", app=app)
    with pytest.raises(Unauthorized):
        cast_vote(board["outsider"], cid, mid, "yes", app=app)
    with pytest.raises(ValidationError):
        cast_vote(a, cid, mid, "maybe", app=app)

    assert _stored_tally(app, mid) == Tally(0, 0, 0)


def test_vote_requires_second(board):
    app, cid = board["app"], board["committee_id"]
    a = board["voters"][0]
    with session_scope(app) as s:
        mid = create_motion(s, a, cid, title="Paint the hall").id

    with pytest.raises(PreconditionFailed):
        cast_vote(a, cid, mid, "yes", app=app)


def test_voting_closed(board):
    app, cid, mid = board["app"], board["committee_id"], board["motion_id"]
    close_motion(board["owner"], cid, mid, app=app)
    with pytest.raises(PreconditionFailed):
        cast_vote(board["voters"][0], cid, mid, "yes", app=app)


def test_anonymous_vote_hides_name(board):
    app, cid, mid = board["app"], board["committee_id"], board["motion_id"]
    a = board["voters"][2]
    cast_vote(a, cid, mid, "no", anonymous=True, app=app)

    with session_scope(app) as s:
        v = s.execute(select(Vote).where(Vote.voter_user_id == a.id)).scalar_one()
        ev = s.execute(select(AuditEvent).where(AuditEvent.action == "vote.cast")).scalar_one()
    assert v.anonymous is True
    assert v.voter_display_name is None
    assert "choice" not in (ev.metadata_json or "")


def test_recast_same_choice_applies_new_anonymity(board):
    app, cid, mid = board["app"], board["committee_id"], board["motion_id"]
    a = board["voters"][0]
    cast_vote(a, cid, mid, "yes", app=app)
    tally = cast_vote(a, cid, mid, "yes", anonymous=True, app=app)
    assert tally == Tally(1, 0, 0)
    assert _stored_tally(app, mid) == tally

    with session_scope(app) as s:
        v = s.execute(select(Vote).where(Vote.voter_user_id == a.id)).scalar_one()
        assert v.anonymous is True
        assert v.voter_display_name is None
        assert recount_tally(s, mid) == tally

    cast_vote(a, cid, mid, "yes", app=app)
    with session_scope(app) as s:
        v = s.execute(select(Vote).where(Vote.voter_user_id == a.id)).scalar_one()
        assert v.anonymous is False
        assert v.voter_display_name == "Member 0"


def test_overturn_requires_related_motion(board):
    app, cid = board["app"], board["committee_id"]
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            create_motion(s, board["voters"][0], cid, title="Undo", kind="overturn")


def test_concurrent_votes_keep_tally_consistent(app):
    app.config["TX_MAX_ATTEMPTS"] = 25
    owner = _user(app, "chair@example.com")
    voters = [_user(app, f"v{i}@example.com") for i in range(8)]
    with session_scope(app) as s:
        c = create_committee(s, owner, name="Busy")
        for v in voters:
            add_member(s, owner, c.id, user_id=v.id)
        m = create_motion(s, owner, c.id, title="Extend the meeting", second_required=False)
        cid, mid = c.id, m.id

    choices = ["yes", "no", "abstain", "yes", "yes", "no", "yes", "abstain"]
    start = threading.Barrier(len(voters))
    errors = []

    def vote(voter, choice):
        start.wait()
        try:
            cast_vote(voter, cid, mid, choice, app=app)
        except Exception as e:  # collected for the assertion below
            errors.append(e)

    threads = [threading.Thread(target=vote, args=pair) for pair in zip(voters, choices)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    expected = Counter(choices)
    stored = _stored_tally(app, mid)
    assert stored == Tally(yes=expected["yes"], no=expected["no"], abstain=expected["abstain"])
    with session_scope(app) as s:
        assert recount_tally(s, mid) == stored
        assert len(s.execute(select(Vote).where(Vote.motion_id == mid)).scalars().all()) == len(voters)


def test_anonymous_vote_rejected_when_disabled(app):
    owner = _user(app, "solo@example.com")
    member = _user(app, "second@example.com")
    with session_scope(app) as s:
        c = create_committee(s, owner, name="Plain")
        add_member(s, owner, c.id, user_id=member.id)
        m = create_motion(s, owner, c.id, title="Adjourn", second_required=False)
        cid, mid = c.id, m.id

    with pytest.raises(ValidationError):
        cast_vote(member, cid, mid, "yes", anonymous=True, app=app)
    assert cast_vote(member, cid, mid, "yes", app=app) == Tally(1, 0, 0)


def test_run_transaction_retries_conflicts(app):
    calls = []

    def flaky(s):
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("row version changed")
        return "done"

    assert run_transaction(flaky, app=app) == "done"
    assert len(calls) == 3


def test_run_transaction_gives_up_as_transient(app):
    calls = []

    def locked(s):
        calls.append(1)
        raise OperationalError("UPDATE motions", {}, Exception("database is locked"))

    with pytest.raises(Transient):
        run_transaction(locked, app=app)
    assert len(calls) == 3


def test_run_transaction_does_not_retry_business_errors(app):
    calls = []

    def refuse(s):
        calls.append(1)
        raise PreconditionFailed("nope")

    with pytest.raises(PreconditionFailed):
        run_transaction(refuse, app=app)
    assert len(calls) == 1


def test_run_transaction_rolls_back_on_error(app):
    def partial(s):
        s.add(User(email="ghost@example.com", password_hash="x", is_active=True))
        s.flush()
        raise ValidationError("abort")

    with pytest.raises(ValidationError):
        run_transaction(partial, app=app)
    with session_scope(app) as s:
        assert s.execute(select(User).where(User.email == "ghost@example.com")).first() is None


def test_run_transaction_retries_unique_conflicts(app):
    calls = []

    def duplicate(s):
        calls.append(1)
        raise IntegrityError(
            "INSERT INTO votes", {}, Exception("UNIQUE constraint failed: votes.motion_id, votes.voter_user_id")
        )

    with pytest.raises(Transient):
        run_transaction(duplicate, app=app)
    assert len(calls) == 3


def test_run_transaction_does_not_retry_other_integrity_errors(app):
    calls = []

    def dangling(s):
        calls.append(1)
        raise IntegrityError("INSERT INTO votes", {}, Exception("FOREIGN KEY constraint failed"))

    with pytest.raises(IntegrityError):
        run_transaction(dangling, app=app)
    assert len(calls) == 1


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__("integrity violation")
        self.sqlstate = sqlstate


def test_write_conflict_classification():
    assert is_write_conflict(StaleDataError("row version changed"))
    assert is_write_conflict(OperationalError("UPDATE", {}, Exception("database is locked")))
    assert is_write_conflict(IntegrityError("INSERT", {}, _PgError("23505")))
    assert not is_write_conflict(IntegrityError("INSERT", {}, _PgError("23503")))
    assert not is_write_conflict(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: votes.choice")))
    assert not is_write_conflict(ValidationError("bad input"))
