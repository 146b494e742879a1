"""auth/ -- Identity core: credentials, tokens, verification and reset flows,
role-rank authorization.

Layer rule: auth/ does not import from api/. api/ imports from auth/, not the
other way around. cache/ and mail/ are reached only through their Protocols
(OtpStore, MailSender) by the two flow modules.
"""
