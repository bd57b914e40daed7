"""
Error and warning types shared by the standings and bracket services.

Fatal conditions are exceptions (the single call is rejected); non-fatal
data-integrity conditions travel alongside results as IntegrityWarning values.
"""

from dataclasses import dataclass
from typing import Optional


class InvalidInputError(ValueError):
    """Structurally invalid call; the caller must not proceed with it."""

    pass


class UnknownCriterionError(InvalidInputError):
    """Tie-break configuration names a criterion outside the recognized set."""

    pass


class EmptyParticipantsError(InvalidInputError):
    pass


class SourceLinkError(InvalidInputError):
    """Source-match link points at an unknown match, another tournament, or a non-earlier round."""

    pass


class UndecidedMatchError(Exception):
    """Knockout match finished level with no recorded winner; nothing can be propagated."""

    def __init__(self, match_id: Optional[int], message: Optional[str] = None):
        self.match_id = match_id
        super().__init__(message or f"Match {match_id} finished without a decisive winner")


@dataclass
class IntegrityWarning:
    code: str
    message: str
    match_id: Optional[int] = None

    def to_dict(self):
        return {"code": self.code, "message": self.message, "match_id": self.match_id}


class RecordNotFoundError(LookupError):
    pass
