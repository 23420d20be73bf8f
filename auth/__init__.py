"""auth/ -- Concrete collaborators for the login & consent resolver.

passwords.py -- bcrypt CredentialVerifier
store.py     -- SQLAlchemy Core IdentityStore, BanLedger and AttemptLedger

Layer rule: auth/ may import from core/ (the kernel) but never from api/.
api/ imports from auth/, not the other way around.
"""
