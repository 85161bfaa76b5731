from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .lsp.types import ServerStatus

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


def handler(session: Session, params: dict[str, Any] | None) -> None:
    """Handle rust-analyzer's `experimental/serverStatus` notification."""
    try:
        status = ServerStatus.model_validate(params or {})
    except ValidationError as e:
        logger.warning(f"Ignoring malformed serverStatus from session {session.id}: {e}")
        return

    previous = session.status
    session.status = status

    if status.health == "error":
        logger.error(f"rust-analyzer ({session.root_dir}): {status.message or 'error'}")
    elif status.health == "warning":
        logger.warning(f"rust-analyzer ({session.root_dir}): {status.message or 'warning'}")

    if status.quiescent and (previous is None or not previous.quiescent):
        logger.info(f"Session {session.id} is quiescent (health={status.health})")
