"""identity/ -- Accounts, credentials, external logins, and organization invites.

Layer rule: identity/ imports only stdlib, third-party libraries, and core/.
Callers (HTTP handlers, scheduled workers, the CLI) import from identity/,
never the other way around.
"""
