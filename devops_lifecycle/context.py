"""Orchestrator context shared by the API for the lifetime of a workspace session."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from devops_lifecycle.checkpoint_storage import CheckpointStorageBackend, FileCheckpointStorage
from devops_lifecycle.database import Database
from devops_lifecycle.models import FolderSpec, ProgressRecord
from devops_lifecycle.provider_client import HttpProviderClient, ProviderClient
from devops_lifecycle.services.folder_teardown import FolderTeardown
from devops_lifecycle.services.local_cleanup import LocalArtifactCleaner, repository_name
from devops_lifecycle.services.teardown import TeardownEngine
from devops_lifecycle.settings import Settings
from devops_lifecycle.tree.nodes import NodeTree
from devops_lifecycle.tree.resource_tree import build_workspace_tree


def folder_spec(name: str, record: Optional[dict]) -> FolderSpec:
    """Describe a workspace folder from the progress record it belongs to."""
    if not record:
        return FolderSpec(name=name)
    progress = ProgressRecord.model_validate(record)
    project = progress.project if not isinstance(progress.project, bool) else None
    repository = (progress.repositories or {}).get(repository_name(name))
    deployed = (
        project is not None
        and progress.compartment is not None
        and repository is not None
        and isinstance(repository.codeRepository, str)
        and bool(repository.codeRepository)
    )
    return FolderSpec(
        name=name,
        project_id=project.ocid if project else None,
        compartment_id=progress.compartment.ocid if progress.compartment else None,
        partially_deployed=not deployed,
    )


@dataclass
class OrchestratorContext:
    settings: Settings
    provider: ProviderClient
    checkpoints: CheckpointStorageBackend
    database: Database
    local_cleaner: LocalArtifactCleaner
    tree: NodeTree = field(default_factory=NodeTree)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorContext":
        return cls(
            settings=settings,
            provider=HttpProviderClient.from_settings(settings),
            checkpoints=FileCheckpointStorage(settings.checkpoint_storage_path),
            database=Database(settings.database_url),
            local_cleaner=LocalArtifactCleaner(
                workspace_root=settings.workspace_root,
                resources_dir=settings.resources_dir,
                folder_config_file=settings.folder_config_file,
            ),
        )

    def teardown_engine(self) -> TeardownEngine:
        return TeardownEngine(
            provider=self.provider,
            checkpoints=self.checkpoints,
            local_cleaner=self.local_cleaner,
            stage_sweep_mode=self.settings.stage_sweep_mode,
            bootstrap_timeout=self.settings.bootstrap_timeout_seconds,
            bootstrap_poll=self.settings.bootstrap_poll_seconds,
        )

    def folder_teardown(self) -> FolderTeardown:
        return FolderTeardown(
            provider=self.provider,
            local_cleaner=self.local_cleaner,
            project_tag_key=self.settings.project_tag_key,
        )

    def workspace_folders(self) -> list[FolderSpec]:
        """Folders of the workspace: every visible directory plus every recorded folder."""
        names: list[str] = []
        root = Path(self.settings.workspace_root)
        if root.is_dir():
            names.extend(
                sorted(p.name for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))
            )
        for key in self.checkpoints.list_keys():
            names.extend(name for name in key.split(":") if name not in names)
        return [folder_spec(name, self.checkpoints.load(name)) for name in names]

    def rebuild_tree(self) -> None:
        build_workspace_tree(self.tree, self.provider, self.workspace_folders())
