"""
Serializable snapshot of a wizard session, as returned by the API.
"""

from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .attachments import KnowledgeDocument
from .avatar_profile import ProfileFields
from ...models.wizard_types import WizardMode, WizardStep


class WizardStepInfo(BaseModel):
    key: WizardStep
    title: str
    description: str
    optional: bool = False

    @classmethod
    def from_step(cls, step: WizardStep) -> "WizardStepInfo":
        return cls(key=step, title=step.title, description=step.description, optional=step.is_optional)


class WizardState(BaseModel):
    """State of one wizard session"""

    session_id: str
    mode: WizardMode
    profile_id: Optional[str] = None
    steps: List[WizardStepInfo] = Field(default_factory=list)
    current_step_index: int = Field(default=0, ge=0)
    current_step: WizardStep
    progress_percent: float = Field(default=0.0, ge=0, le=100)
    is_dirty: bool = False
    can_proceed: bool = False
    issues: Dict[str, str] = Field(default_factory=dict, description="Problems blocking the current step")
    step_data: ProfileFields
    knowledge_files: List[KnowledgeDocument] = Field(default_factory=list)
    linked_count: int = 0
    finished: bool = False
