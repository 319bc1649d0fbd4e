import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from ..auth import current_user_id
from ..database import get_db
from ..models.entities import MessageCreate, MessageOut
from ..models.responses import ErrorDetail

router = APIRouter(prefix="/api/messages", tags=["messages"])

_404 = {404: {"model": ErrorDetail, "description": "Message not found"}}


@router.post("", response_model=MessageOut, status_code=201, summary="Send message",
             responses={400: {"model": ErrorDetail, "description": "Unknown receiver or project"}})
async def send_message(
    message: MessageCreate,
    user_id: str = Depends(current_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    if message.receiver_id is not None:
        row = await (await db.execute("SELECT 1 FROM users WHERE id = ?", (message.receiver_id,))).fetchone()
        if not row:
            raise HTTPException(status_code=400, detail="Receiver not found")
    if message.project_id is not None:
        row = await (await db.execute("SELECT 1 FROM projects WHERE id = ?", (message.project_id,))).fetchone()
        if not row:
            raise HTTPException(status_code=400, detail="Project not found")

    cursor = await db.execute(
        """INSERT INTO messages (content, sender_id, receiver_id, project_id, message_type)
           VALUES (?, ?, ?, ?, ?)""",
        (message.content, user_id, message.receiver_id, message.project_id, message.message_type),
    )
    await db.commit()
    row = await (await db.execute("SELECT * FROM messages WHERE id = ?", (cursor.lastrowid,))).fetchone()
    return dict(row)


@router.get("", response_model=list[MessageOut], summary="List my messages")
async def list_messages(
    include_archived: bool = False,
    user_id: str = Depends(current_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    """Messages the caller sent or received, newest first."""
    conditions = ["(sender_id = ? OR receiver_id = ?)"]
    if not include_archived:
        conditions.append("is_archived = 0")
    rows = await (await db.execute(
        f"SELECT * FROM messages WHERE {' AND '.join(conditions)} ORDER BY time_sent DESC, id DESC",
        (user_id, user_id),
    )).fetchall()
    return [dict(r) for r in rows]


@router.get("/{message_id}", response_model=MessageOut, summary="Get message", responses=_404)
async def get_message(message_id: int, db: aiosqlite.Connection = Depends(get_db)):
    row = await (await db.execute("SELECT * FROM messages WHERE id = ?", (message_id,))).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Message not found")
    return dict(row)
