"""Session bookkeeping for the MCP server.

Sessions are opaque identifiers minted on `initialize`. The server keeps
no per-session state, so a client that sends an unknown id is still
served and memory use does not grow with the number of sessions.
"""

import uuid
from typing import Optional

from shared.logging import get_logger

logger = get_logger(__name__)


class SessionManager:
    """Mints and terminates session ids."""

    def ensure(self, session_id: Optional[str]) -> str:
        """Return the given session id, or mint a new one."""
        if not session_id:
            session_id = str(uuid.uuid4())
            logger.info("Session started", session_id=session_id)
        return session_id

    def terminate(self, session_id: Optional[str]) -> bool:
        """
        Terminate a session.

        Returns:
            True when a session id was supplied, False otherwise
        """
        if not session_id:
            return False
        logger.info("Session terminated", session_id=session_id)
        return True
