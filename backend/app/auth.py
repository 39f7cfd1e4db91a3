"""Identity resolution for sheet APIs."""

import os

from fastapi import HTTPException, Request

# purpose: resolve the acting user from the header set by the authenticating proxy
# inputs: incoming request headers
# outputs: actor identifier threaded into query and save attribution
# status: active

ACTOR_HEADER = os.getenv("ACTOR_HEADER", "X-Remote-User")


def get_current_actor(request: Request) -> str:
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor
