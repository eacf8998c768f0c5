# Authentication module

from workspace_terminal.modules.auth.dependencies import (
    get_current_user_id,
    get_session_registry,
    get_session_reaper,
)
