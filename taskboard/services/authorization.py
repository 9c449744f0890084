import logging

from taskboard.core.exceptions import ForbiddenAccessException

logger = logging.getLogger(__name__)


def can_access(actor_id: str, is_admin: bool, resource_owner_id: str) -> bool:
    """Owner-or-admin rule."""
    return is_admin or resource_owner_id == actor_id


def check_access(
    actor_id: str,
    is_admin: bool,
    resource_owner_id: str,
    message: str = "You do not have access to this resource.",
) -> None:
    """Raise ForbiddenAccessException unless the actor owns the resource or is an admin."""
    if not can_access(actor_id, is_admin, resource_owner_id):
        logger.warning("User %s denied access to a resource owned by %s", actor_id, resource_owner_id)
        raise ForbiddenAccessException(message)
