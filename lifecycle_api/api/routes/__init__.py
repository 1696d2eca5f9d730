"""
API route modules.

This package contains subrouters for:
- Auth: login and current user
- Organisations: sign-up of a new organisation and its administrator, listing,
  edits and deletion
- Users, plans, grants and vesting schedules: CRUD and declarative list queries
- Roles: roles an organisation can assign
- FSM: permitted actions, transitions, state machines and version history

Routers are included from lifecycle_api.api.main (under the /api/v1 prefix).
"""
