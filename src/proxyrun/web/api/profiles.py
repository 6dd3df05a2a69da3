"""REST API for profile management."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from proxyrun.session.models import Profile
from proxyrun.storage.repos import ProfileRepo

router = APIRouter(tags=["profiles"])


class ProfileCreate(BaseModel):
    host: str
    remote_port: int = Field(default=8388, ge=1, le=65535)
    password: str
    method: str = "aes-256-gcm"
    name: str = ""
    plugin: str = ""
    route: str = "all"
    udpdns: bool = False


def _public(row: dict) -> dict:
    row = dict(row)
    row.pop("password", None)
    return row


@router.get("/profiles")
async def list_profiles(request: Request):
    repo = ProfileRepo(request.app.state.db)
    return [_public(row) for row in await repo.list_all()]


@router.get("/profiles/{profile_id}")
async def get_profile(profile_id: int, request: Request):
    repo = ProfileRepo(request.app.state.db)
    row = await repo.get(profile_id)
    if not row:
        return JSONResponse(
            status_code=404,
            content={"detail": "Profile not found"},
        )
    return _public(row)


@router.post("/profiles")
async def create_profile(body: ProfileCreate, request: Request):
    repo = ProfileRepo(request.app.state.db)
    profile_id = await repo.create(Profile(**body.model_dump()))
    return {"status": "created", "id": profile_id}


@router.delete("/profiles/{profile_id}")
async def delete_profile(profile_id: int, request: Request):
    repo = ProfileRepo(request.app.state.db)
    if not await repo.delete(profile_id):
        return JSONResponse(
            status_code=404,
            content={"detail": "Profile not found"},
        )
    return {"status": "deleted", "id": profile_id}
