"""
Configuration management for Avatar Studio
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

MB = 1024 * 1024


def _resolve_env_value(value: Any) -> Any:
    """Resolve ``${VAR}`` placeholders against the environment"""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        return os.getenv(value[2:-1], '')
    return value


class StorageConfig(BaseModel):
    """Configuration for blob storage and metadata files"""
    base_storage_dir: str = Field(default="./data/studio", description="Base storage directory for all data")
    blob_dir_name: str = Field(default="blobs", description="Blob directory under the base directory")
    profiles_file: str = Field(default="profiles.json", description="Profile registry file name")
    knowledge_file: str = Field(default="knowledge.json", description="Knowledge metadata file name")
    drafts_dir_name: str = Field(default="drafts", description="Draft cache directory name")
    public_base_url: str = Field(default="http://localhost:8000/files", description="Base URL for public blob links")
    logs_dir: str = Field(default="./logs", description="Logs directory")

    @field_validator('public_base_url', 'base_storage_dir')
    @classmethod
    def resolve_env_vars(cls, v):
        """Resolve environment variables in storage locations"""
        return _resolve_env_value(v)


class UploadRule(BaseModel):
    """Accepted content types and size limit for one upload purpose"""
    content_types: List[str] = Field(default_factory=list, description="Allowed types, 'image/*' style wildcards allowed")
    max_size_mb: float = Field(default=50, gt=0, description="Maximum size in megabytes")

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * MB)


class UploadsConfig(BaseModel):
    """Upload rules per purpose"""
    knowledge: UploadRule = Field(
        default_factory=lambda: UploadRule(content_types=["application/pdf"], max_size_mb=50)
    )
    avatar_image: UploadRule = Field(
        default_factory=lambda: UploadRule(content_types=["image/*"], max_size_mb=50)
    )
    profile_picture: UploadRule = Field(
        default_factory=lambda: UploadRule(content_types=["image/*"], max_size_mb=5)
    )


class WizardConfig(BaseModel):
    """Configuration for the avatar creation wizard"""
    min_persona_tags: int = Field(default=5, ge=0, description="Tags required to leave the persona step")
    max_persona_tags: int = Field(default=25, ge=1, description="Hard cap on persona tags")
    default_origin_country: str = Field(default="Malaysia")
    default_primary_language: str = Field(default="English")
    unsaved_changes_message: str = Field(
        default=(
            "You have unsaved changes. If you leave now, all your progress will be lost. "
            "Are you sure you want to continue?"
        )
    )
    persist_drafts: bool = Field(default=True, description="Keep unsaved text fields in the draft cache")


class ChangeFeedConfig(BaseModel):
    """Configuration for change feed consumers"""
    websocket_queue_size: int = Field(default=100, ge=1, description="Buffered changes per websocket client")


class LoggingConfig(BaseModel):
    """Configuration for logging"""
    level: str = Field(default="INFO", description="Log level")
    file_logging: bool = Field(default=False, description="Also write a rotating log file")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format"
    )


class APICORSConfig(BaseModel):
    """Configuration for API CORS"""
    enabled: bool = Field(default=True)
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    allow_methods: List[str] = Field(default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE"])
    allow_headers: List[str] = Field(default_factory=lambda: ["*"])


class APIConfig(BaseModel):
    """Configuration for FastAPI application"""
    title: str = Field(default="Avatar Studio API")
    version: str = Field(default="1.0.0")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    reload: bool = Field(default=False)
    cors: APICORSConfig = Field(default_factory=APICORSConfig)


class Settings(BaseModel):
    """Main settings class for Avatar Studio"""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    uploads: UploadsConfig = Field(default_factory=UploadsConfig)
    wizard: WizardConfig = Field(default_factory=WizardConfig)
    change_feed: ChangeFeedConfig = Field(default_factory=ChangeFeedConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    version: str = Field(default="1.0.0", description="Configuration version")
    environment: str = Field(default="development", description="Environment name")

    def __init__(self, config_path: Optional[str] = None, **kwargs):
        """Initialize settings from config file or kwargs"""
        if config_path:
            config_data = self._load_config_file(config_path)
            config_data.update(kwargs)
            super().__init__(**config_data)
        else:
            super().__init__(**kwargs)

        self._ensure_directories()

    @staticmethod
    def _load_config_file(config_path: str) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        return config_data or {}

    def _ensure_directories(self):
        """Ensure the storage directories exist"""
        Path(self.storage.base_storage_dir).mkdir(parents=True, exist_ok=True)
        if self.logging.file_logging:
            Path(self.storage.logs_dir).mkdir(parents=True, exist_ok=True)

    @property
    def base_storage_dir(self) -> str:
        """Convenience property to access base storage directory"""
        return self.storage.base_storage_dir

    def get_blob_root(self) -> str:
        """Get absolute path to the blob storage root"""
        return str((Path(self.storage.base_storage_dir) / self.storage.blob_dir_name).resolve())

    def get_profiles_path(self) -> str:
        """Get absolute path to the profile registry file"""
        return str((Path(self.storage.base_storage_dir) / self.storage.profiles_file).resolve())

    def get_knowledge_path(self) -> str:
        """Get absolute path to the knowledge metadata file"""
        return str((Path(self.storage.base_storage_dir) / self.storage.knowledge_file).resolve())

    def get_drafts_path(self) -> str:
        """Get absolute path to the draft cache directory"""
        return str((Path(self.storage.base_storage_dir) / self.storage.drafts_dir_name).resolve())

    def get_logs_path(self) -> str:
        """Get absolute path to logs directory"""
        return str(Path(self.storage.logs_dir).resolve())

    def validate_configuration(self) -> List[str]:
        """Validate configuration and return any issues"""
        issues = []

        if self.wizard.min_persona_tags > self.wizard.max_persona_tags:
            issues.append(
                f"min_persona_tags ({self.wizard.min_persona_tags}) exceeds "
                f"max_persona_tags ({self.wizard.max_persona_tags})"
            )

        for purpose in ("knowledge", "avatar_image", "profile_picture"):
            rule: UploadRule = getattr(self.uploads, purpose)
            if not rule.content_types:
                issues.append(f"No content types allowed for {purpose} uploads")

        if not self.storage.public_base_url:
            issues.append("Public base URL for blob storage is empty")

        try:
            base_storage = Path(self.storage.base_storage_dir)
            base_storage.mkdir(parents=True, exist_ok=True)
            test_file = base_storage / "test_write"
            test_file.touch()
            test_file.unlink()
        except PermissionError:
            issues.append(f"No write permission to storage directory: {self.storage.base_storage_dir}")
        except OSError as e:
            issues.append(f"Cannot access storage directory: {e}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary"""
        return self.model_dump(by_alias=True, exclude_none=True)

    def save_to_file(self, output_path: str):
        """Save configuration to YAML file"""
        with open(output_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)

    @classmethod
    def from_default_config(cls) -> "Settings":
        """Create settings from default configuration file"""
        default_config_path = Path(__file__).parent / "studio_config.yaml"
        if default_config_path.exists():
            return cls(config_path=str(default_config_path))
        else:
            return cls()

    @classmethod
    def from_file(cls, config_path: str) -> "Settings":
        """Create settings from configuration file"""
        return cls(config_path=config_path)


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Convenience function to load settings"""
    if config_path:
        return Settings.from_file(config_path)
    else:
        return Settings.from_default_config()


# Global settings instance
_settings: Optional[Settings] = None


def get_settings(config_path: Optional[str] = None, reload: bool = False) -> Settings:
    """Get global settings instance"""
    global _settings

    if _settings is None or reload:
        _settings = load_settings(config_path)

    return _settings
