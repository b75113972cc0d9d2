"""
Quota Check Data Models

This package contains the data models used by a quota check run. None of them are persisted
except QuotaSnapshot, which is written to the output file at the end of a run.

Key Models:
- credentials.py: Registered client applications and the flow selected for each
- session.py: Authorization sessions and bearer tokens
- quota.py: Quota snapshots, the snapshot builder and per-application results

Secrets (client secrets and access tokens) are held as pydantic SecretStr values so they are
masked in logs, reprs and error messages.
"""
