"""
Validation utilities for wizard steps, uploads and configuration
"""

from typing import Callable, Dict, List, Optional
from pathlib import Path

from .errors import ValidationError, UploadRejected
from ..config.settings import Settings, UploadRule, WizardConfig
from ..data.models.avatar_profile import ProfileFields
from ..data.models.attachments import UploadedFile, format_file_size
from ..models.wizard_types import WizardStep, UploadPurpose


StepValidator = Callable[[ProfileFields, WizardConfig], Dict[str, str]]


def validate_detail_step(fields: ProfileFields, wizard: WizardConfig) -> Dict[str, str]:
    """
    Validate the Avatar Detail step

    Args:
        fields: Current step data
        wizard: Wizard configuration

    Returns:
        Mapping of field name to issue (empty if valid)
    """
    issues = {}
    if not fields.name.strip():
        issues["name"] = "Avatar name is required."
    if fields.age is None or fields.age < 1:
        issues["age"] = "Valid age is required."
    if not fields.gender.strip():
        issues["gender"] = "Gender is required."
    if not fields.primary_language:
        issues["primary_language"] = "Primary language is required."
    return issues


def validate_persona_step(fields: ProfileFields, wizard: WizardConfig) -> Dict[str, str]:
    """Persona tags must be within the configured bounds"""
    count = len(fields.persona_tags)
    if count < wizard.min_persona_tags:
        return {
            "persona_tags": f"At least {wizard.min_persona_tags} persona tags are required "
                            f"(need {wizard.min_persona_tags - count} more)."
        }
    if count > wizard.max_persona_tags:
        return {"persona_tags": f"At most {wizard.max_persona_tags} persona tags are allowed."}
    return {}


def validate_backstory_step(fields: ProfileFields, wizard: WizardConfig) -> Dict[str, str]:
    if not fields.backstory.strip():
        return {"backstory": "Backstory is required."}
    return {}


def validate_optional_step(fields: ProfileFields, wizard: WizardConfig) -> Dict[str, str]:
    return {}


STEP_VALIDATORS: Dict[WizardStep, StepValidator] = {
    WizardStep.DETAIL: validate_detail_step,
    WizardStep.PERSONA: validate_persona_step,
    WizardStep.BACKSTORY: validate_backstory_step,
    WizardStep.HIDDEN_RULES: validate_optional_step,
    WizardStep.KNOWLEDGE: validate_optional_step,
}


def validate_step(step: WizardStep, fields: ProfileFields, settings: Optional[Settings] = None) -> Dict[str, str]:
    """
    Run the predicate registered for ``step``

    Returns:
        Mapping of field name to issue (empty if the step is complete)
    """
    wizard = settings.wizard if settings else WizardConfig()
    return STEP_VALIDATORS[step](fields, wizard)


def ensure_step_valid(step: WizardStep, fields: ProfileFields, settings: Optional[Settings] = None):
    """Raise ValidationError when ``step`` does not validate"""
    issues = validate_step(step, fields, settings)
    if issues:
        raise ValidationError(
            f"{step.title} is incomplete: " + " ".join(issues.values()),
            issues=issues,
            step=step.title
        )


def content_type_allowed(content_type: str, allowed: List[str]) -> bool:
    """
    Check a content type against an allow list supporting ``type/*`` wildcards
    """
    content_type = (content_type or "").split(';')[0].strip().lower()
    for pattern in allowed:
        pattern = pattern.lower()
        if pattern.endswith('/*'):
            if content_type.startswith(pattern[:-1]):
                return True
        elif content_type == pattern:
            return True
    return False


def validate_upload(upload: UploadedFile, rule: UploadRule, purpose: UploadPurpose):
    """
    Reject files that do not match the rule for ``purpose``

    Raises:
        UploadRejected: wrong content type, empty file, or over the size limit
    """
    if not content_type_allowed(upload.content_type, rule.content_types):
        raise UploadRejected(
            f"'{upload.filename}' has type '{upload.content_type}'; "
            f"{purpose.value} uploads accept {', '.join(rule.content_types)} only",
            reason="content_type"
        )
    if upload.size == 0:
        raise UploadRejected(f"'{upload.filename}' is empty", reason="empty")
    if upload.size > rule.max_size_bytes:
        raise UploadRejected(
            f"'{upload.filename}' is {format_file_size(upload.size)}, which exceeds the "
            f"{format_file_size(rule.max_size_bytes)} size limit for {purpose.value} uploads",
            reason="size",
            limit_bytes=rule.max_size_bytes
        )


def validate_config_file(config_path: str) -> List[str]:
    """
    Validate configuration file

    Args:
        config_path: Path to configuration file

    Returns:
        List of validation issues
    """
    issues = []

    config_file = Path(config_path)

    if not config_file.exists():
        issues.append(f"Configuration file not found: {config_path}")
        return issues

    try:
        settings = Settings(config_path=config_path)
        issues.extend(settings.validate_configuration())
    except Exception as e:
        issues.append(f"Failed to load configuration: {e}")

    return issues
