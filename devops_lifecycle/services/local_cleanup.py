"""Removal of the local state a deployed folder leaves in the workspace."""

import logging
import re
import shutil
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


def repository_name(folder_name: str) -> str:
    """Name a folder's code repository is registered under."""
    return re.sub(r"\s+", "_", folder_name)


class LocalArtifactCleaner:
    """Deletes the registration file, generated resources and local git clone of a folder."""

    def __init__(
        self,
        workspace_root: str = ".",
        resources_dir: str = ".devops",
        folder_config_file: str = ".vscode/devops.json",
    ):
        self.workspace_root = Path(workspace_root)
        self.resources_dir = resources_dir
        self.folder_config_file = folder_config_file

    def folder_path(self, folder_name: str) -> Path:
        return self.workspace_root / folder_name

    def _report(self, progress: Optional[ProgressCallback], message: str) -> None:
        logger.info("[undeploy] %s", message)
        if progress:
            progress(message)

    def clean(
        self,
        folder_names: list[str],
        repo_name: str,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Clean the workspace folder whose repository name is ``repo_name``, if any."""
        for folder_name in folder_names:
            if repository_name(folder_name) == repo_name:
                self.remove_registration(folder_name, progress)
                self.remove_git(folder_name, progress)
                return

    def remove_registration(
        self,
        folder_name: str,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Delete the DevOps registration file and the generated resources directory."""
        folder = self.folder_path(folder_name)

        config_path = folder / self.folder_config_file
        if config_path.exists():
            self._report(progress, f"Deleting DevOps registration {config_path}")
            config_path.unlink()

        resources_path = folder / self.resources_dir
        if resources_path.exists():
            self._report(progress, f"Deleting local DevOps resources at {resources_path}")
            shutil.rmtree(resources_path)

    def remove_git(
        self,
        folder_name: str,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Delete the local git clone of a folder."""
        git_path = self.folder_path(folder_name) / ".git"
        if git_path.exists():
            self._report(progress, f"Deleting local git repository at {git_path}")
            shutil.rmtree(git_path)
