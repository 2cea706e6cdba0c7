"""Configuration and directory profile routes."""

import logging

from fastapi import APIRouter, HTTPException, Request

from ..config import ConfigSnapshot, DirectoryProfile, ProfileExistsError, ProfileNotFoundError
from ..models import ConfigModel, DirectoryProfileModel, DirectoryUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _applied(request: Request, snapshot: ConfigSnapshot) -> dict:
    request.app.state.broadcaster.update_config(snapshot)
    return {"config": snapshot.to_dict()}


@router.get("/config")
def get_config(request: Request) -> dict:
    store = request.app.state.store
    return {"config": store.load().to_dict(), "configPath": str(store.path)}


@router.put("/config")
def replace_config(body: ConfigModel, request: Request) -> dict:
    """Replace the whole configuration document."""
    snapshot = ConfigSnapshot.from_dict(body.model_dump())
    request.app.state.store.save(snapshot)
    logger.info("Configuration replaced")
    return _applied(request, snapshot)


@router.post("/directories")
def add_directory(body: DirectoryProfileModel, request: Request) -> dict:
    profile = DirectoryProfile(**body.model_dump())
    try:
        snapshot = request.app.state.store.add_directory(profile)
    except ProfileExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info(f"Added directory profile {profile.path}")
    return _applied(request, snapshot)


@router.put("/directories/{path:path}")
def update_directory(path: str, body: DirectoryUpdateRequest, request: Request) -> dict:
    """Update a profile; the path is URL-encoded into the route."""
    updates = body.model_dump(exclude_none=True)
    try:
        snapshot = request.app.state.store.update_directory(path, updates)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _applied(request, snapshot)


@router.delete("/directories/{path:path}")
def remove_directory(path: str, request: Request) -> dict:
    try:
        snapshot = request.app.state.store.remove_directory(path)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info(f"Removed directory profile {path}")
    return _applied(request, snapshot)
