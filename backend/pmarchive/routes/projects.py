import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from ..auth import current_user_id
from ..database import get_db
from ..models.entities import ProjectCreate, ProjectOut
from ..models.responses import ErrorDetail

router = APIRouter(prefix="/api/projects", tags=["projects"])

_404 = {404: {"model": ErrorDetail, "description": "Project not found"}}


@router.post("", response_model=ProjectOut, status_code=201, summary="Create project")
async def create_project(
    project: ProjectCreate,
    user_id: str = Depends(current_user_id),
    db: aiosqlite.Connection = Depends(get_db),
):
    cursor = await db.execute(
        """INSERT INTO projects (project_name, project_owner, priority, status, due_date, created_by)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (project.project_name, project.project_owner, project.priority,
         project.status, project.due_date, user_id),
    )
    await db.commit()
    row = await (await db.execute("SELECT * FROM projects WHERE id = ?", (cursor.lastrowid,))).fetchone()
    return dict(row)


@router.get("", response_model=list[ProjectOut], summary="List projects")
async def list_projects(include_archived: bool = False, db: aiosqlite.Connection = Depends(get_db)):
    """List projects, newest first. Archived projects are hidden unless requested."""
    where = "" if include_archived else " WHERE is_archived = 0"
    rows = await (await db.execute(
        f"SELECT * FROM projects{where} ORDER BY created_at DESC, id DESC"
    )).fetchall()
    return [dict(r) for r in rows]


@router.get("/{project_id}", response_model=ProjectOut, summary="Get project", responses=_404)
async def get_project(project_id: int, db: aiosqlite.Connection = Depends(get_db)):
    row = await (await db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Project not found")
    return dict(row)
