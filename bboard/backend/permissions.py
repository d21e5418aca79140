"""Project role checks."""

import database as db

PROJECT_ADMIN_ROLES = ("ADMIN", "PO")
PROJECT_VIEWER_ROLES = ("ADMIN", "PO", "DEV", "QA", "VIEWER")


class ForbiddenError(Exception):
    pass


async def ensure_project_role(user: dict, project_id: str, roles: tuple[str, ...]) -> dict | None:
    """Raise ForbiddenError unless the user holds one of roles on the project.

    Global ADMINs pass without a membership. Returns the membership row.
    """
    membership = await db.get_project_member(project_id, user["id"])
    if user["role"] == "ADMIN":
        return membership
    if membership is None or membership["role"] not in roles:
        raise ForbiddenError(f"User {user['id']} lacks {'/'.join(roles)} access to project {project_id}")
    return membership
