"""
Request and response shapes for the HTTP boundary.

Bodies are validated here before anything reaches the credential store or
the pipeline.
"""
from typing import List

from pydantic import AliasChoices, BaseModel, Field


class AuthRequest(BaseModel):
    login_id: str = Field(
        ...,
        validation_alias=AliasChoices("loginId", "username", "login_id"),
        description="Username or user id",
    )
    password: str


class UserOut(BaseModel):
    id: str
    username: str
    storageFolder: str = Field(..., description="Display label, not a path")


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class PhotoOut(BaseModel):
    id: str
    name: str
    url: str
    thumbnailUrl: str
    addedAt: int = Field(..., description="Epoch milliseconds")
    downloadUrl: str


class UploadError(BaseModel):
    name: str
    code: str
    error: str


class PhotoList(BaseModel):
    photos: List[PhotoOut]


class UploadResponse(BaseModel):
    photos: List[PhotoOut]
    errors: List[UploadError] = Field(default_factory=list)
