class LedgerError(Exception):
    """Base class for errors raised by inbox-ledger."""


class MailboxError(LedgerError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(MailboxError):
    """The mailbox credential is expired or invalid. Never retried."""


class RateLimited(MailboxError):
    """The mailbox API throttled the request."""


class TransientError(MailboxError):
    """Network failures and unexpected mailbox responses."""


class PersistenceError(LedgerError):
    """A store read or write failed."""


class SyncError(LedgerError):
    def __init__(self, message: str, run_id: int | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id
