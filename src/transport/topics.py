"""Topic naming for the live transport.

Topics are namespaced per recipient (``user.<id>``) and per team
(``team.<id>``). Admins additionally hear about alerts nobody owns on
``admin.unassigned``.
"""

from collections.abc import Iterable

USER_PREFIX = "user"
TEAM_PREFIX = "team"
ADMIN_UNASSIGNED_TOPIC = "admin.unassigned"

ADMIN_ROLE = "ADMIN"


def user_topic(user_id: int) -> str:
    return f"{USER_PREFIX}.{user_id}"


def team_topic(team_id: int) -> str:
    return f"{TEAM_PREFIX}.{team_id}"


def is_valid_topic(topic: str) -> bool:
    """True for ``user.<int>``, ``team.<int>`` and the admin topic."""
    if topic == ADMIN_UNASSIGNED_TOPIC:
        return True
    prefix, _, ident = topic.partition(".")
    return prefix in (USER_PREFIX, TEAM_PREFIX) and ident.isdigit()


def allowed_topics(
    user_id: int,
    team_ids: Iterable[int] = (),
    role: str | None = None,
) -> frozenset[str]:
    """Topics a user's session may subscribe to.

    A user hears their own topic and every team they belong to; admins
    also hear the unassigned pool.
    """
    topics = {user_topic(user_id)}
    topics.update(team_topic(tid) for tid in team_ids)
    if role and role.upper() == ADMIN_ROLE:
        topics.add(ADMIN_UNASSIGNED_TOPIC)
    return frozenset(topics)
