"""
Entra ID Group Module

Finds or creates the Entra ID security groups used by the AVD deployment.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Any, Callable, List, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

GROUPS_PATH = "groups"
GROUP_FIELDS = "id,displayName,mailNickname"


@dataclass(frozen=True)
class Group:
    """An Entra ID group handle."""

    object_id: str
    display_name: str
    mail_nickname: str = ""

    @classmethod
    def from_graph(cls, item: Dict[str, Any]) -> "Group":
        return cls(
            object_id=item['id'],
            display_name=item.get('displayName', ''),
            mail_nickname=item.get('mailNickname') or '',
        )


def derive_mail_nickname(display_name: str) -> str:
    """Graph rejects spaces and most punctuation in mailNickname."""
    nickname = re.sub(r'[^A-Za-z0-9]', '', display_name or '')
    return nickname[:64] or 'group'


class GroupManager:
    """Resolve Entra ID groups by name or create new security groups."""

    def __init__(self, graph):
        """
        Initialize the GroupManager.

        Args:
            graph: GraphClient
        """
        self.graph = graph

    def list_groups(self) -> List[Group]:
        """Fetch every group in the tenant."""
        items = self.graph.get_all(GROUPS_PATH, params={"$select": GROUP_FIELDS})
        return [Group.from_graph(item) for item in items]

    def find_groups(self, pattern: str) -> List[Group]:
        """
        Find groups whose display name matches a regular expression.

        The search is case-sensitive, as the Graph display names are.

        Args:
            pattern: Regular expression or plain substring

        Returns:
            Matching groups in the order Graph returned them
        """
        try:
            regex = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid group search pattern '{pattern}': {e}")
        return [g for g in self.list_groups() if regex.search(g.display_name)]

    def get_by_name(self, display_name: str) -> Optional[Group]:
        """Exact display name lookup."""
        escaped = display_name.replace("'", "''")
        items = self.graph.get_all(
            GROUPS_PATH,
            params={"$filter": f"displayName eq '{escaped}'", "$select": GROUP_FIELDS},
        )
        if len(items) > 1:
            logger.warning("%d groups are named '%s', using the first", len(items), display_name)
        return Group.from_graph(items[0]) if items else None

    def resolve_group(self, pattern: str,
                      choose: Optional[Callable[[str, List[str]], int]] = None) -> Optional[Group]:
        """
        Locate one group by substring or pattern.

        Args:
            pattern: Search pattern
            choose: Called with a title and the candidate names when more than one
                group matches; returns the chosen index

        Returns:
            The selected group, or None when nothing matches
        """
        matches = self.find_groups(pattern)
        if not matches:
            logger.info("No group matches '%s'", pattern)
            return None
        if len(matches) == 1:
            return matches[0]
        if choose is None:
            raise ConfigurationError(
                f"{len(matches)} groups match '{pattern}': "
                + ", ".join(g.display_name for g in matches)
            )

        index = choose(f"Groups matching '{pattern}'", [g.display_name for g in matches])
        return matches[index]

    def create_group(self, display_name: str, description: str = "") -> Group:
        """Create a security group (never mail-enabled)."""
        body = {
            "displayName": display_name,
            "description": description or display_name,
            "mailEnabled": False,
            "mailNickname": derive_mail_nickname(display_name),
            "securityEnabled": True,
        }
        created = self.graph.post(GROUPS_PATH, body)
        logger.info("Created group '%s' (%s)", display_name, created.get('id'))
        return Group.from_graph(created)

    def ensure_group(self, display_name: str, description: str = "") -> Group:
        """Return the group with this exact name, creating it when missing."""
        existing = self.get_by_name(display_name)
        if existing:
            logger.info("Group '%s' already exists (%s)", display_name, existing.object_id)
            return existing
        return self.create_group(display_name, description)
