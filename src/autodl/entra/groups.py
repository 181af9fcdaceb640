"""Entra ID group lookup for the source side of the sync."""

import logging
from dataclasses import dataclass

from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.groups.groups_request_builder import GroupsRequestBuilder
from msgraph.generated.groups.item.members.members_request_builder import (
    MembersRequestBuilder,
)
from msgraph.generated.models.directory_object import DirectoryObject
from msgraph.generated.models.group import Group

from autodl.core.normalize import escape_single_quotes, normalize_identity

logger = logging.getLogger(__name__)

USER_ODATA_TYPE = "#microsoft.graph.user"

GROUP_SELECT_FIELDS = [
    "id",
    "displayName",
    "description",
    "mail",
    "mailEnabled",
    "securityEnabled",
]
MEMBER_SELECT_FIELDS = ["id", "displayName", "mail", "userPrincipalName"]


@dataclass
class EntraGroup:
    """Represents an Entra ID group."""

    id: str
    display_name: str
    description: str | None
    mail: str | None
    mail_enabled: bool
    security_enabled: bool


class EntraGroupManager:
    """Resolve Entra ID groups and read their direct members."""

    def __init__(self, client: GraphServiceClient) -> None:
        """Initialize the group manager.

        Args:
            client: Authenticated Graph client shared for the whole run
        """
        self.client = client

    def _to_entra_group(self, group: Group) -> EntraGroup:
        """Convert MS Graph Group to EntraGroup."""
        return EntraGroup(
            id=group.id or "",
            display_name=group.display_name or "",
            description=group.description,
            mail=group.mail,
            mail_enabled=group.mail_enabled or False,
            security_enabled=group.security_enabled or False,
        )

    async def get_group_by_name(self, display_name: str) -> EntraGroup | None:
        """Find a group by exact, case-sensitive display name.

        Args:
            display_name: The display name to search for

        Returns:
            EntraGroup if found, None otherwise. If several groups share the
            name, the first one returned by Graph is used.
        """
        query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
            filter=f"displayName eq '{escape_single_quotes(display_name)}'",
            select=GROUP_SELECT_FIELDS,
        )
        config = RequestConfiguration(query_parameters=query_params)

        result = await self.client.groups.get(request_configuration=config)
        if not result or not result.value:
            return None

        # Graph compares displayName case-insensitively
        matches = [g for g in result.value if g.display_name == display_name]
        if not matches:
            others = ", ".join(f"'{g.display_name}'" for g in result.value)
            logger.warning(f"No group named exactly '{display_name}' (differs in case: {others})")
            return None

        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} groups named '{display_name}' found, using {matches[0].id}"
            )
        return self._to_entra_group(matches[0])

    async def get_member_identities(self, group_id: str) -> set[str]:
        """Get the normalized mail addresses of a group's direct members.

        Follows every page of the members listing. Members that are not
        users, or users without a mail address, are skipped with a warning.

        Args:
            group_id: The group ID

        Returns:
            Set of lowercase member mail addresses
        """
        query_params = MembersRequestBuilder.MembersRequestBuilderGetQueryParameters(
            select=MEMBER_SELECT_FIELDS,
            top=999,
        )
        config = RequestConfiguration(query_parameters=query_params)
        members_builder = self.client.groups.by_group_id(group_id).members

        identities: set[str] = set()
        result = await members_builder.get(request_configuration=config)
        while result:
            for member in result.value or []:
                identity = self._member_identity(member)
                if identity:
                    identities.add(identity)

            if not result.odata_next_link:
                break
            result = await members_builder.with_url(result.odata_next_link).get()

        logger.debug(f"Group {group_id} has {len(identities)} addressable members")
        return identities

    def _member_identity(self, member: DirectoryObject) -> str | None:
        """Return the normalized mail of a user member, or None to skip it."""
        name = getattr(member, "display_name", None) or member.id

        if member.odata_type != USER_ODATA_TYPE:
            logger.warning(f"Skipping non-user member {name} ({member.odata_type})")
            return None

        identity = normalize_identity(getattr(member, "mail", None))
        if not identity:
            logger.warning(f"Skipping member {name}: no mail address")
        return identity
