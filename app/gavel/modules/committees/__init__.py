"""
Committees module.

Scope:
- Committee create/delete (owner only; delete cascades motions)
- Roster with owner/chair/member roles, invite codes, join by code
- Settings (default threshold, anonymous voting, second required)
- JSON export of a committee's full record
"""
