"""
Central constants for the Gavel application.
"""
from __future__ import annotations

# Committee roster roles
ROLE_OWNER = "owner"
ROLE_CHAIR = "chair"
ROLE_MEMBER = "member"
MEMBER_ROLES = frozenset({ROLE_OWNER, ROLE_CHAIR, ROLE_MEMBER})

# Motion types (Robert's Rules classes)
MOTION_TYPES = ("Main", "Subsidiary", "Privileged", "Incidental", "Procedural")

# Motion kinds; "overturn" re-opens a recorded decision, "sub" hangs off a parent motion
KIND_STANDARD = "standard"
KIND_SUB = "sub"
KIND_SPECIAL = "special"
KIND_OVERTURN = "overturn"
MOTION_KINDS = frozenset({KIND_STANDARD, KIND_SUB, KIND_SPECIAL, KIND_OVERTURN})

# Motion statuses
STATUS_ACTIVE = "active"
STATUS_CLOSED = "closed"
STATUS_COMPLETED = "completed"
STATUS_DENIED = "denied"
STATUS_DELETED = "deleted"
MOTION_STATUSES = frozenset({STATUS_ACTIVE, STATUS_CLOSED, STATUS_COMPLETED, STATUS_DENIED, STATUS_DELETED})

# Vote thresholds
THRESHOLD_SIMPLE_MAJORITY = "Simple Majority"
THRESHOLD_TWO_THIRDS = "Two-Thirds"
THRESHOLD_UNANIMOUS = "Unanimous"
THRESHOLDS = (THRESHOLD_SIMPLE_MAJORITY, THRESHOLD_TWO_THIRDS, THRESHOLD_UNANIMOUS)

# Vote choices
CHOICE_YES = "yes"
CHOICE_NO = "no"
CHOICE_ABSTAIN = "abstain"
VOTE_CHOICES = (CHOICE_YES, CHOICE_NO, CHOICE_ABSTAIN)

# Reply stances
REPLY_STANCES = frozenset({"pro", "con", "neutral"})

# Committee settings defaults (applied when a committee or motion omits them)
DEFAULT_SETTINGS = {
    "default_threshold": THRESHOLD_SIMPLE_MAJORITY,
    "allow_anonymous_voting": False,
    "require_second": True,
}

INVITE_CODE_LENGTH = 6
INVITE_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
