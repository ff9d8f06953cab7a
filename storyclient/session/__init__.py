"""Credential lifecycle."""

from storyclient.session.provider import SessionProvider

__all__ = ["SessionProvider"]
