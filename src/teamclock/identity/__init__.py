"""Identity module -- local user directory, credentials, and CRM reconciliation.

Provides SQLAlchemy models (IdentityModel, CredentialModel), Pydantic schemas,
IdentityRepository/CredentialRepository for async CRUD, CredentialResolver,
the ReconciliationEngine, and the two-phase launch session.
"""
