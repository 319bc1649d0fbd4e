"""Caller identity resolution.

Authentication happens upstream; the gateway forwards the authenticated
user's id in a header (``X-User-Id`` by default). Handlers depend on
``current_user_id`` and never read identity from request bodies.
"""

import aiosqlite
from fastapi import Depends, HTTPException, Request

from . import config
from .database import get_db


async def current_user_id(request: Request, db: aiosqlite.Connection = Depends(get_db)) -> str:
    user_id = request.headers.get(config.USER_HEADER, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    row = await (await db.execute("SELECT 1 FROM users WHERE id = ?", (user_id,))).fetchone()
    if row is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user_id
