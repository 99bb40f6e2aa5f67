"""auth/ -- Authentication and authorization package for ClubGate.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.

Modules, leaves first:
  roles.py        -- static Role/Permission registry
  errors.py       -- typed rejection reasons
  models.py       -- User, Session, InviteCode, Identity dataclasses
  tokens.py       -- access token codec, bcrypt hashing, constant-time login
  store.py        -- schema, UserStore, SessionStore
  invites.py      -- InviteStore (issue / validate / consume / deactivate)
  guards.py       -- authorization predicates
  dependencies.py -- request authentication state machine + FastAPI wiring
"""
