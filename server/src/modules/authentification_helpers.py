import secrets
from typing import Dict, Optional

from fastapi import Request

# token -> username; filled by the login collaborator (or by tests)
SESSIONS: Dict[str, str] = {}


def make_token() -> str:
    return secrets.token_hex(16)

def get_auth_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    return None

def open_session(username: str) -> str:
    token = make_token()
    SESSIONS[token] = username
    return token

def close_session(token: Optional[str]) -> None:
    if token and token in SESSIONS:
        del SESSIONS[token]

def get_session_username(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    return SESSIONS.get(token)
