"""Explicit tenant context handed to every service that needs org scoping."""

from pydantic import BaseModel


class AppSession(BaseModel):
    """
    The signed-in user and the organization they are currently working in.

    access_token is the user's backend JWT; it is forwarded to the backend so
    row-level security applies, and to billing functions as the bearer token.
    """

    user_id: str
    org_id: str
    access_token: str | None = None
    role: str | None = None
    email: str | None = None
    display_name: str | None = None
