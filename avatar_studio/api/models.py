"""API request and response models"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..data.models.attachments import KnowledgeDocument
from ..data.models.avatar_profile import AvatarProfile


class CreateSessionRequest(BaseModel):
    """Request model for starting a wizard session"""
    owner_id: str = Field(default="", description="Authoring user id")
    profile_id: Optional[str] = Field(default=None, description="Open this profile in edit mode")
    restore_draft: bool = Field(default=False, description="Restore unsaved fields from the draft cache")
    resume_session_id: Optional[str] = Field(
        default=None, description="Earlier create session whose unsaved fields are restored"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "owner_id": "user-42",
                "profile_id": None,
                "restore_draft": True,
                "resume_session_id": None
            }
        }
    }


class FieldsUpdateRequest(BaseModel):
    """Request model for field edits"""
    fields: Dict[str, Any] = Field(..., description="Profile fields to overwrite")

    model_config = {
        "json_schema_extra": {
            "example": {
                "fields": {"name": "Aria", "age": 28, "gender": "female"}
            }
        }
    }


class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1, max_length=100, description="Persona tag")


class LanguageRequest(BaseModel):
    language: str = Field(..., description="Language name, e.g. 'English'")


class ImageRemoveRequest(BaseModel):
    url: str = Field(..., description="Public URL of the image to drop")


class ExitRequest(BaseModel):
    """Request model for closing a wizard session"""
    discard_changes: bool = Field(
        default=False,
        description="Answer to the unsaved-changes prompt; only consulted when the session is dirty"
    )


class ExitResponse(BaseModel):
    allowed: bool = Field(..., description="Whether the session was closed")
    is_dirty: bool = Field(..., description="Whether the session had unsaved changes")
    message: Optional[str] = Field(default=None, description="Unsaved-changes prompt shown to the author")


class SaveResponse(BaseModel):
    profile_id: str = Field(..., description="Id of the persisted profile")
    finished: bool = Field(default=False)


class ProfileListResponse(BaseModel):
    profiles: List[AvatarProfile] = Field(..., description="Profiles, oldest first")
    count: int = Field(..., description="Total number of profiles")


class KnowledgeListResponse(BaseModel):
    profile_id: str
    documents: List[KnowledgeDocument] = Field(..., description="Knowledge documents, oldest first")
    linked_count: int = Field(..., description="Documents used for training")
    total_count: int = Field(..., description="All documents")


class ErrorResponse(BaseModel):
    """Error body returned for every studio error"""
    detail: str = Field(..., description="Human readable error message")
    error: str = Field(..., description="Error class name")
    issues: Dict[str, str] = Field(default_factory=dict, description="Per-field problems, if any")
    step: Optional[str] = Field(default=None, description="Wizard step that failed, if any")
    reason: Optional[str] = Field(default=None, description="Upload rejection reason, if any")


class HealthResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: str = Field(..., description="Current timestamp")
    active_sessions: int = Field(..., description="Open wizard sessions")
    subscriptions: int = Field(..., description="Active change feed subscriptions")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "timestamp": "2026-03-02T10:30:00Z",
                "active_sessions": 2,
                "subscriptions": 3
            }
        }
    }
