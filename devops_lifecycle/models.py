from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class WorkRequestStatus(str, Enum):
    """Status of a provider work request."""

    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    CANCELING = "CANCELING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


IN_FLIGHT_STATUSES = frozenset(
    {
        WorkRequestStatus.ACCEPTED.value,
        WorkRequestStatus.IN_PROGRESS.value,
        WorkRequestStatus.CANCELING.value,
    }
)


class ResourceKind(str, Enum):
    """Kinds of provider resources; values are the REST collection names."""

    PROJECT = "projects"
    CODE_REPOSITORY = "repositories"
    BUILD_PIPELINE = "buildPipelines"
    BUILD_STAGE = "buildPipelineStages"
    DEPLOY_PIPELINE = "deployPipelines"
    DEPLOY_STAGE = "deployStages"
    DEPLOY_ARTIFACT = "deployArtifacts"
    DEPLOY_ENVIRONMENT = "deployEnvironments"
    CONTAINER_REPOSITORY = "containerRepositories"
    ARTIFACT_REPOSITORY = "artifactRepositories"
    GENERIC_ARTIFACT = "genericArtifacts"
    LOG_GROUP = "logGroups"
    LOG = "logs"
    KNOWLEDGE_BASE = "knowledgeBases"
    VULNERABILITY_AUDIT = "vulnerabilityAudits"


class OperationKind(str, Enum):
    """Operation tracked by the folder operation ledger."""

    DEPLOY = "deploy"
    UNDEPLOY = "undeploy"


class OperationStatus(str, Enum):
    """Status of a folder operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TeardownMode(str, Enum):
    """Scope of a teardown request."""

    PROJECT = "project"  # whole progress record, tier by tier
    REPOSITORY = "repository"  # one repository removed from an intact project


# -- Provider resources --


class ResourceSummary(BaseModel):
    """Summary of a provider resource as returned by list calls."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    display_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("displayName", "name", "display_name")
    )
    lifecycle_state: Optional[str] = Field(default=None, alias="lifecycleState")
    freeform_tags: dict[str, str] = Field(default_factory=dict, alias="freeformTags")
    predecessor_ids: list[str] = Field(default_factory=list, alias="predecessorIds")
    log_group_id: Optional[str] = Field(default=None, alias="logGroupId")
    source_repository_ids: list[str] = Field(default_factory=list, alias="sourceRepositoryIds")
    source_resource: Optional[str] = Field(default=None, alias="sourceResource")

    @model_validator(mode="before")
    @classmethod
    def flatten_collections(cls, data: Any) -> Any:
        """Flatten the provider's nested collections into plain fields."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "predecessorIds" not in data:
            for key in ("buildPipelineStagePredecessorCollection", "deployStagePredecessorCollection"):
                collection = data.get(key)
                if collection:
                    data["predecessorIds"] = [item["id"] for item in collection.get("items", [])]
                    break
        sources = data.get("buildSourceCollection")
        if sources and "sourceRepositoryIds" not in data:
            data["sourceRepositoryIds"] = [
                item["repositoryId"] for item in sources.get("items", []) if item.get("repositoryId")
            ]
        source = ((data.get("configuration") or {}).get("source") or {}).get("resource")
        if source and "sourceResource" not in data:
            data["sourceResource"] = source
        return data

    @property
    def name(self) -> str:
        return self.display_name or self.id


class WorkRequestResource(BaseModel):
    """Resource affected by a work request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identifier: str
    entity_type: Optional[str] = Field(default=None, alias="entityType")


class WorkRequest(BaseModel):
    """Provider-side long-running operation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: str
    resources: list[WorkRequestResource] = Field(default_factory=list)


# -- Progress record --


class CompartmentRef(BaseModel):
    """Compartment the deployed resources live in."""

    model_config = ConfigDict(extra="allow")

    ocid: str
    name: Optional[str] = None


class ProjectRef(BaseModel):
    """Parent DevOps project."""

    model_config = ConfigDict(extra="allow")

    ocid: str
    name: Optional[str] = None


Handle = Union[str, bool, None]


class RepositoryRecord(BaseModel):
    """Resources created for one source repository.

    Flavor-specific fields (``docker_nibuildPipeline``, ``deployJvmToOkeStage``,
    ...) are kept as extra fields so the record round-trips unchanged.
    """

    model_config = ConfigDict(extra="allow")

    codeRepository: Handle = None
    subs: Optional[dict[str, Optional["RepositoryRecord"]]] = None


class ProgressRecord(BaseModel):
    """Checkpoint of everything one deploy operation created."""

    model_config = ConfigDict(extra="allow")

    compartment: Optional[CompartmentRef] = None
    project: Optional[Union[ProjectRef, bool]] = None
    tag: Optional[str] = None
    repositories: Optional[dict[str, Optional[RepositoryRecord]]] = None

    artifactsRepository: Handle = None
    logGroup: Handle = None
    projectLogWorkRequest: Handle = None
    knowledgeBaseOCID: Handle = None
    knowledgeBaseWorkRequest: Handle = None
    okeClusterEnvironment: Handle = None


# Keys that describe where resources live rather than resources themselves.
RECORD_METADATA_KEYS = frozenset({"compartment", "tag", "profile", "logGroup"})
REPOSITORY_METADATA_KEYS = frozenset({"git"})


def folder_key(folders: Union[str, Sequence[str]]) -> str:
    """Join folder names into the key a progress record is stored under."""
    if isinstance(folders, str):
        return folders
    return ":".join(folders)


def is_repository_empty(record: dict) -> bool:
    """True when a repository record holds no live resource handle."""
    for key, value in record.items():
        if key == "subs":
            if any(not is_repository_empty(sub or {}) for sub in (value or {}).values()):
                return False
        elif key not in REPOSITORY_METADATA_KEYS:
            return False
    return True


def is_record_empty(record: Optional[dict]) -> bool:
    """True when a progress record holds no live resource handle."""
    if not record:
        return True
    for key, value in record.items():
        if key == "repositories":
            if any(not is_repository_empty(repo or {}) for repo in (value or {}).values()):
                return False
        elif key not in RECORD_METADATA_KEYS:
            return False
    return True


# -- API models --


class TeardownRequest(BaseModel):
    """Request to tear down one or more folders."""

    folders: list[str] = Field(..., min_length=1, description="Folder names sharing one record")
    mode: TeardownMode = Field(default=TeardownMode.PROJECT)
    project_id: Optional[str] = Field(
        default=None, description="DevOps project OCID (repository mode only)"
    )
    compartment_id: Optional[str] = Field(
        default=None, description="Compartment OCID (repository mode only)"
    )
    sub_names: list[str] = Field(
        default_factory=list, description="Cloud-specific sub-module names (repository mode only)"
    )

    @model_validator(mode="after")
    def check_repository_mode(self) -> "TeardownRequest":
        if self.mode == TeardownMode.REPOSITORY:
            if len(self.folders) != 1:
                raise ValueError("repository mode tears down exactly one folder")
            if not self.project_id or not self.compartment_id:
                raise ValueError("repository mode requires project_id and compartment_id")
        return self


class TeardownResponse(BaseModel):
    """Response returned when a teardown is accepted."""

    folder_key: str
    operation_id: int
    status: OperationStatus
    message: str


class TeardownResult(BaseModel):
    """Final outcome of a teardown run."""

    success: bool
    error: Optional[str] = None


class FolderOperation(BaseModel):
    """Ledger entry of a deploy or undeploy operation."""

    id: int
    folder_key: str
    operation: OperationKind
    status: OperationStatus
    error_message: Optional[str] = None
    progress: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class FolderSpec(BaseModel):
    """Workspace folder shown in the resource tree."""

    name: str
    project_id: Optional[str] = None
    compartment_id: Optional[str] = None
    partially_deployed: bool = False


class TreeNodeView(BaseModel):
    """Serialized tree node."""

    id: str
    label: str
    description: Optional[str] = None
    context_kind: Optional[str] = None
    state: str
    capabilities: list[str] = Field(default_factory=list)
    parent_id: Optional[str] = None


class TreeChildrenResponse(BaseModel):
    """Children of a tree node together with the tree revision."""

    node_id: Optional[str]
    revision: int
    children: list[TreeNodeView]
