"""Credential models."""

from storyclient.common.models.base import ClientModel


class TokenPair(ClientModel):
    """A bearer credential and the refresh credential that renews it."""

    credential: str
    refresh_credential: str | None = None
