"""Pydantic models for API request/response schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AddTagsRequest(BaseModel):
    """Request body for adding custom tags to a session."""

    tags: list[str]


class DirectoryProfileModel(BaseModel):
    """A directory profile as sent by clients."""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1)
    label: str = ""
    color: str = "#7c3aed"
    enabled: bool = True
    type: Literal["claude", "codex"] = "claude"


class DirectoryUpdateRequest(BaseModel):
    """Request body for updating a directory profile addressed by its path."""

    model_config = ConfigDict(extra="forbid")

    label: str | None = None
    color: str | None = None
    enabled: bool | None = None
    type: Literal["claude", "codex"] | None = None


class ServerSettings(BaseModel):
    port: int = Field(default=9847, gt=0, lt=65536)


class ConfigModel(BaseModel):
    """Full configuration document, used by PUT /api/config."""

    model_config = ConfigDict(extra="forbid")

    directories: list[DirectoryProfileModel]
    pins: list[str] = []
    customTags: dict[str, list[str]] = {}
    server: ServerSettings = ServerSettings()
