"""Bearer-token protection for the profile cleanup API."""
from __future__ import annotations

import os
import secrets
from typing import Iterable, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

API_TOKENS_ENV = "PROFILESWEEP_API_TOKENS"


class TokenAuth:
    """FastAPI dependency accepting any of a fixed set of API tokens."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = [token.strip().encode("utf-8") for token in tokens if token.strip()]
        if not self._tokens:
            raise ValueError("At least one API token must be provided")
        self._bearer = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> None:
        credentials: Optional[HTTPAuthorizationCredentials] = await self._bearer(request)
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        provided = credentials.credentials.encode("utf-8")
        if any(secrets.compare_digest(provided, token) for token in self._tokens):
            return None
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API token")


def load_tokens_from_env(env_name: str = API_TOKENS_ENV) -> List[str]:
    return [token.strip() for token in os.getenv(env_name, "").split(",") if token.strip()]


__all__ = ["API_TOKENS_ENV", "TokenAuth", "load_tokens_from_env"]
