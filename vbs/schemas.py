"""
Structured shapes exchanged with the model and persisted to disk.

Model output is validated here before anything acts on it. Field names are
snake_case in Python and camelCase on the wire (``populate_by_name`` lets
either form in).
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from vbs.exceptions import SchemaValidationError


ProjectType = Literal["api", "frontend", "fullstack"]
PROJECT_TYPES = ("api", "frontend", "fullstack")

BODY_METHODS = ("POST", "PUT", "PATCH")

DATABASE_KEYWORDS = ("postgres", "mysql", "mariadb", "mongo", "sqlite", "redis", "prisma", "sequelize", "typeorm")

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

T = TypeVar("T", bound=BaseModel)


def slugify(value: str, fallback: str = "project") -> str:
    """Lowercase, hyphen-separated, filesystem and pm2 safe"""
    slug = _SLUG_STRIP.sub("-", (value or "").strip().lower()).strip("-")
    return slug[:50].strip("-") or fallback


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def validate_model(model_cls: Type[T], data: Any, label: Optional[str] = None) -> T:
    """Validate parsed JSON against ``model_cls``"""
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(
            label or model_cls.__name__,
            errors=e.errors(include_url=False, include_context=False),
        ) from e


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ==================== Generator Outputs ====================

class Analysis(CamelModel):
    """Structured reading of the user's one-line request"""
    project_type: str = Field(alias="projectType")
    detected_stack: List[str] = Field(alias="detectedStack")
    complexity: Literal["simple", "medium", "complex"]
    estimated_files: int = Field(alias="estimatedFiles")
    required_system_packages: List[str] = Field(alias="requiredSystemPackages")
    suggested_project_name: str = Field(alias="suggestedProjectName")
    frontend_framework: Optional[Literal["react", "nextjs"]] = Field(default=None, alias="frontendFramework")
    is_static: bool = Field(alias="isStatic")
    build_required: bool = Field(alias="buildRequired")
    summary: str

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("frontend_framework", mode="before")
    @classmethod
    def normalize_framework(cls, v):
        if isinstance(v, str):
            v = v.strip().lower().replace(".", "").replace(" ", "")
            if v in ("", "none", "null", "static", "html"):
                return None
            if v in ("next", "nextjs"):
                return "nextjs"
        return v

    @field_validator("suggested_project_name", mode="after")
    @classmethod
    def slug_name(cls, v: str) -> str:
        return slugify(v)

    def stack_mentions(self, keyword: str) -> bool:
        keyword = keyword.lower()
        return any(keyword in item.lower() for item in self.detected_stack)

    @property
    def uses_database(self) -> bool:
        return any(self.stack_mentions(k) for k in DATABASE_KEYWORDS)

    @property
    def needs_postgres(self) -> bool:
        return self.stack_mentions("postgres") or any(
            "postgres" in pkg.lower() for pkg in self.required_system_packages
        )


class ConfigQuestion(CamelModel):
    id: str
    type: Literal["input", "list", "confirm"] = "input"
    message: str
    default: Any = None
    choices: Optional[List[str]] = None
    validate_tag: Optional[str] = Field(default=None, alias="validate")

    @field_validator("choices", mode="before")
    @classmethod
    def stringify_choices(cls, v):
        if isinstance(v, list):
            return [str(c) for c in v]
        return v

    @model_validator(mode="after")
    def list_needs_choices(self):
        if self.type == "list" and not self.choices:
            self.type = "input"
        return self


class QuestionSet(CamelModel):
    questions: List[ConfigQuestion]


class Endpoint(CamelModel):
    method: str
    path: str
    description: str
    requires_auth: bool = Field(alias="requiresAuth")
    example_body: Optional[Any] = Field(default=None, alias="exampleBody")

    @field_validator("method", mode="after")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("path", mode="after")
    @classmethod
    def leading_slash(cls, v: str) -> str:
        v = v.strip()
        return v if v.startswith("/") else "/" + v

    @model_validator(mode="after")
    def body_for_body_methods(self):
        if self.method in BODY_METHODS and self.example_body is None:
            raise ValueError(f"{self.method} {self.path} needs an exampleBody")
        return self


class FileRecord(CamelModel):
    path: str
    content: str


class GeneratedProject(CamelModel):
    """Files plus the run metadata the launcher needs"""
    files: List[FileRecord] = Field(min_length=1)
    start_command: Optional[str] = Field(default=None, alias="startCommand")
    pm2_name: Optional[str] = Field(default=None, alias="pm2Name")
    build_command: Optional[str] = Field(default=None, alias="buildCommand")
    build_required: Optional[bool] = Field(default=None, alias="buildRequired")
    frontend_framework: Optional[str] = Field(default=None, alias="frontendFramework")
    backend_start_command: Optional[str] = Field(default=None, alias="backendStartCommand")
    frontend_start_command: Optional[str] = Field(default=None, alias="frontendStartCommand")
    backend_pm2_name: Optional[str] = Field(default=None, alias="backendPm2Name")
    frontend_pm2_name: Optional[str] = Field(default=None, alias="frontendPm2Name")
    health_endpoint: Optional[str] = Field(default=None, alias="healthEndpoint")
    all_endpoints: List[Endpoint] = Field(default_factory=list, alias="allEndpoints")


class ModificationResult(CamelModel):
    summary: str
    files: List[FileRecord]
    restart_required: bool = Field(default=True, alias="restartRequired")
    rebuild_required: bool = Field(default=False, alias="rebuildRequired")
    notes: Optional[str] = None


class FixResult(CamelModel):
    patches: List[FileRecord] = Field(default_factory=list)
    explanation: str = ""

    @model_validator(mode="before")
    @classmethod
    def accept_files_key(cls, data):
        if isinstance(data, dict) and "patches" not in data and "files" in data:
            data = {**data, "patches": data["files"]}
        return data


# ==================== Persisted Records ====================

class ProjectRecord(CamelModel):
    """One entry in the global registry"""
    name: str
    dir: str
    type: str
    stack: List[str] = Field(default_factory=list)
    port: Optional[int] = None
    created_at: str = Field(default_factory=utc_now, alias="createdAt")


class BackendConfig(CamelModel):
    port: int
    framework: Optional[str] = None
    start_command: Optional[str] = Field(default=None, alias="startCommand")
    pm2_name: str = Field(alias="pm2Name")


class FrontendConfig(CamelModel):
    port: Optional[int] = None
    framework: Optional[str] = None
    pm2_name: Optional[str] = Field(default=None, alias="pm2Name")
    build_command: Optional[str] = Field(default=None, alias="buildCommand")


class ServerConfig(CamelModel):
    ip: Optional[str] = None
    nginx: Optional[str] = Field(default=None, alias="nginxConfig")


class ModificationEntry(CamelModel):
    date: str = Field(default_factory=utc_now)
    request: str
    files: List[str] = Field(default_factory=list)
    summary: str = ""


class ProjectConfig(CamelModel):
    """Contents of config.vbs in the project directory"""
    version: str = "2.0"
    name: str
    type: str
    is_static: bool = Field(default=False, alias="isStatic")
    complexity: Optional[str] = None
    created_at: str = Field(default_factory=utc_now, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now, alias="updatedAt")
    prompt: str = ""
    stack: List[str] = Field(default_factory=list)
    backend: Optional[BackendConfig] = None
    frontend: Optional[FrontendConfig] = None
    server: ServerConfig = Field(default_factory=ServerConfig)
    answers: Dict[str, Any] = Field(default_factory=dict)
    endpoints: List[Endpoint] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    modification_history: List[ModificationEntry] = Field(default_factory=list, alias="modificationHistory")

    @property
    def pm2_names(self) -> List[str]:
        names = []
        if self.backend and self.backend.pm2_name:
            names.append(self.backend.pm2_name)
        if self.frontend and self.frontend.pm2_name:
            names.append(self.frontend.pm2_name)
        return names

    @property
    def port(self) -> Optional[int]:
        if self.backend:
            return self.backend.port
        if self.frontend:
            return self.frontend.port
        return None
