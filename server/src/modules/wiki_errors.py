"""Error kinds raised by the wiki store.

All of them are local and synchronous; none is retried. The HTTP layer maps
them to status codes in ``wiki_api``.
"""


class WikiError(Exception):
    """Base class for wiki store failures."""


class ValidationError(WikiError):
    """Title, markup or permission scope rejected."""


class TitleTakenError(ValidationError):
    """Another page already uses this title or shorthand title."""


class PermissionDenied(WikiError):
    """The requester lacks the capability needed for the action."""


class PreconditionViolation(WikiError):
    """Revision capture called out of sequence. Caller bug, never swallowed."""


class NotFound(WikiError):
    """Lookup by shorthand title, id or revision number failed."""


class RollbackImpossible(WikiError):
    """The page has no revision left to revoke."""
