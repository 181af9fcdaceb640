"""Naming rules for the distribution list that mirrors each Entra group."""

from dataclasses import dataclass

DISPLAY_NAME_SUFFIX = " - autoDL"
ALIAS_SUFFIX = "-autodl"


@dataclass(frozen=True)
class GroupMapping:
    """One Entra group to distribution list pairing.

    Every target field is derived from the source group name and the
    configured email domain.
    """

    source_group_name: str
    email_domain: str

    @property
    def target_display_name(self) -> str:
        """Display name of the distribution list, e.g. "Finance-Team - autoDL"."""
        return f"{self.source_group_name}{DISPLAY_NAME_SUFFIX}"

    @property
    def target_alias(self) -> str:
        """Mail alias of the distribution list, e.g. "finance-team-autodl"."""
        return f"{self.source_group_name}{ALIAS_SUFFIX}".lower()

    @property
    def target_address(self) -> str:
        """Primary SMTP address, e.g. "Finance-Team@contoso.com"."""
        return f"{self.source_group_name}@{self.email_domain}"

    @classmethod
    def build(cls, group_names: list[str], email_domain: str) -> list["GroupMapping"]:
        """Build mappings in configuration order.

        Duplicate names are kept; each one is processed on its own.
        """
        return [cls(source_group_name=name, email_domain=email_domain) for name in group_names]
