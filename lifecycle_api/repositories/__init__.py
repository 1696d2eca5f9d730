"""
Repository layer for data access.

Repositories encapsulate SQLAlchemy queries for each domain area. They take the
request's TenantContext and conjoin its tenant predicate to every statement;
committing is left to the context's transaction.
"""
