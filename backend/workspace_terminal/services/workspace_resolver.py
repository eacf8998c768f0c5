"""
Workspace Resolver - project id -> working directory

Default implementation of the workspace-path collaborator: every project gets
`<WORKSPACE_ROOT>/<project_id>`, created on first use. The terminal core treats
the returned path as opaque and never checks it again.

Provisioning services that place workspaces elsewhere only need to provide
an object with the same `resolve(project_id) -> str` method.
"""

import re
from pathlib import Path
from typing import Optional, Protocol, Union

from workspace_terminal.core.config import settings
from workspace_terminal.core.exceptions import ValidationError
from workspace_terminal.core.logging_config import logger


# Project ids become a single path component
_PROJECT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class WorkspacePathResolver(Protocol):
    def resolve(self, project_id: str) -> str:
        ...


class WorkspaceResolver:
    """Maps project ids to directories under a workspace root"""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root or settings.WORKSPACE_ROOT)

    def get_workspace_path(self, project_id: str) -> Path:
        if not project_id or not _PROJECT_ID_PATTERN.match(project_id) or ".." in project_id:
            raise ValidationError(f"Invalid project ID: {project_id!r}", field="project_id")
        return self.root / project_id

    def resolve(self, project_id: str) -> str:
        """
        Return the absolute workspace directory for a project, creating it if needed.

        Raises:
            ValidationError: project_id cannot be used as a directory name
        """
        path = self.get_workspace_path(project_id)
        if not path.exists():
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"[Workspace] Created workspace for {project_id}: {path}")
        return str(path.resolve())
