"""Session token verification."""

from .session import SessionVerifier, issue_token

__all__ = ["SessionVerifier", "issue_token"]
