"""
Motions module.

Scope:
- Motions: propose, second, discuss (append-only replies)
- Vote ledger: one live vote per member per motion, tally kept in the same transaction
- Threshold evaluation (Simple Majority / Two-Thirds / Unanimous) against votes cast
- Status transitions: active -> closed -> completed|denied, delete from active/closed
- Decisions and overturn proposals
"""
