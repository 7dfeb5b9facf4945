from fastapi import APIRouter, Header

from server.models.responses import LangResponse
from shared.helper.HelperLang import negotiate_lang

router = APIRouter(prefix="/lang", tags=["lang"])


@router.get("")
async def resolve_lang(
    path: str = "/",
    query: str = "",
    stored: str | None = None,
    accept_language: str | None = Header(default=None),
) -> LangResponse:
    """Pick the UI language for ``path`` and tell the caller where to redirect, if anywhere.

    Args:
        path (str): Requested path, with or without a language segment.
        query (str): Query string to keep on the redirect target.
        stored (str | None): Language the user chose earlier.
        accept_language (str | None): The browser's Accept-Language header.

    Returns:
        LangResponse: The language and, when the path lacks a valid segment, the redirect target.
    """
    lang, redirect = negotiate_lang(path, stored=stored, accept_language=accept_language, query=query)
    return LangResponse(lang=lang, redirect=redirect)
