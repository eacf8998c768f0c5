from workspace_terminal.services.workspace_resolver import WorkspaceResolver, WorkspacePathResolver
