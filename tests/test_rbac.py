"""Authorization gate and status transition table."""
import pytest

from app.gavel.constants import (
    ROLE_CHAIR,
    ROLE_MEMBER,
    ROLE_OWNER,
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_DENIED,
)
from app.gavel.errors import InvalidTransition, Unauthenticated, Unauthorized, ValidationError
from app.gavel.identity import Identity
from app.gavel.modules.committees.models import Committee, CommitteeMember
from app.gavel.modules.motions.models import Motion
from app.gavel.rbac import (
    can_manage_committee,
    can_mutate,
    check_transition,
    member_role,
    require_member,
    require_mutation,
)

OWNER, CHAIR, CREATOR, MEMBER, OUTSIDER = 1, 2, 3, 4, 5


@pytest.fixture()
def committee():
    c = Committee(id=10, name="Board", owner_user_id=OWNER)
    c.members.extend(
        [
            CommitteeMember(user_id=OWNER, role=ROLE_OWNER),
            CommitteeMember(user_id=CHAIR, role=ROLE_CHAIR),
            CommitteeMember(user_id=CREATOR, role=ROLE_MEMBER),
            CommitteeMember(user_id=MEMBER, role=ROLE_MEMBER),
        ]
    )
    return c


@pytest.fixture()
def motion():
    return Motion(id=20, committee_id=10, title="Buy chairs", creator_user_id=CREATOR, status=STATUS_ACTIVE)


def test_roles(committee):
    assert member_role(committee, OWNER) == ROLE_OWNER
    assert member_role(committee, CHAIR) == ROLE_CHAIR
    assert member_role(committee, MEMBER) == ROLE_MEMBER
    assert member_role(committee, OUTSIDER) is None
    assert can_manage_committee(committee, CHAIR)
    assert not can_manage_committee(committee, MEMBER)


def test_owner_without_roster_row_is_still_owner(committee):
    committee.owner_user_id = 99
    assert member_role(committee, 99) == ROLE_OWNER


@pytest.mark.parametrize("action", ["close", "approve", "deny", "delete"])
def test_owner_and_chair_can_do_everything(committee, motion, action):
    assert can_mutate(OWNER, committee, motion, action)
    assert can_mutate(CHAIR, committee, motion, action)


@pytest.mark.parametrize("action", ["close", "approve", "deny"])
def test_creator_cannot_decide_own_motion(committee, motion, action):
    assert not can_mutate(CREATOR, committee, motion, action)


def test_delete_rights(committee, motion):
    assert can_mutate(CREATOR, committee, motion, "delete")
    assert not can_mutate(MEMBER, committee, motion, "delete")
    assert not can_mutate(OUTSIDER, committee, motion, "delete")


def test_unknown_action_rejected(committee, motion):
    with pytest.raises(ValidationError):
        can_mutate(OWNER, committee, motion, "archive")


def test_require_mutation_raises(committee, motion):
    with pytest.raises(Unauthenticated):
        require_mutation(None, committee, motion, "delete")
    with pytest.raises(Unauthorized):
        require_mutation(Identity(id=MEMBER, email="m@example.com"), committee, motion, "delete")
    actor = Identity(id=OWNER, email="o@example.com")
    assert require_mutation(actor, committee, motion, "delete") is actor


def test_require_member(committee):
    assert require_member(Identity(id=MEMBER, email="m@example.com"), committee).user_id == MEMBER
    with pytest.raises(Unauthorized):
        require_member(Identity(id=OUTSIDER, email="x@example.com"), committee)


@pytest.mark.parametrize(
    "current, target",
    [
        (STATUS_ACTIVE, STATUS_CLOSED),
        (STATUS_ACTIVE, STATUS_DELETED),
        (STATUS_CLOSED, STATUS_COMPLETED),
        (STATUS_CLOSED, STATUS_DENIED),
        (STATUS_CLOSED, STATUS_DELETED),
    ],
)
def test_allowed_transitions(current, target):
    check_transition(current, target)


@pytest.mark.parametrize("current", [STATUS_COMPLETED, STATUS_DENIED, STATUS_DELETED])
@pytest.mark.parametrize("target", [STATUS_ACTIVE, STATUS_CLOSED, STATUS_COMPLETED, STATUS_DENIED, STATUS_DELETED])
def test_terminal_statuses_are_final(current, target):
    with pytest.raises(InvalidTransition):
        check_transition(current, target)


def test_skipping_close_is_invalid():
    with pytest.raises(InvalidTransition):
        check_transition(STATUS_ACTIVE, STATUS_COMPLETED)
    with pytest.raises(InvalidTransition):
        check_transition("archived", STATUS_CLOSED)
