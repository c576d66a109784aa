"""
auth/ -- Identity and credential-lifecycle package for idgate.

Layer rule: auth/ imports stdlib, third-party libraries, core/, and the
Notifier interface from mail/. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
