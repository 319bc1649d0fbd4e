import sqlite3

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from ..database import get_db
from ..models.entities import UserCreate, UserOut
from ..models.responses import ErrorDetail

router = APIRouter(prefix="/api/users", tags=["users"])

_404 = {404: {"model": ErrorDetail, "description": "User not found"}}


@router.post("", response_model=UserOut, status_code=201, summary="Register user",
             responses={409: {"model": ErrorDetail, "description": "User id already exists"}})
async def create_user(user: UserCreate, db: aiosqlite.Connection = Depends(get_db)):
    """Register a directory user so they can act as a caller and be archived."""
    try:
        await db.execute(
            "INSERT INTO users (id, full_name, email, department, title) VALUES (?, ?, ?, ?, ?)",
            (user.id, user.full_name, user.email, user.department, user.title),
        )
        await db.commit()
    except sqlite3.IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="User already exists")
    row = await (await db.execute("SELECT * FROM users WHERE id = ?", (user.id,))).fetchone()
    return dict(row)


@router.get("", response_model=list[UserOut], summary="List users")
async def list_users(include_archived: bool = False, db: aiosqlite.Connection = Depends(get_db)):
    where = "" if include_archived else " WHERE is_archived = 0"
    rows = await (await db.execute(f"SELECT * FROM users{where} ORDER BY full_name ASC, id ASC")).fetchall()
    return [dict(r) for r in rows]


@router.get("/{user_id}", response_model=UserOut, summary="Get user", responses=_404)
async def get_user(user_id: str, db: aiosqlite.Connection = Depends(get_db)):
    row = await (await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="User not found")
    return dict(row)
