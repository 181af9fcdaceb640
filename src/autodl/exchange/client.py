"""Exchange Online PowerShell client.

Executes Exchange Online PowerShell cmdlets via subprocess to manage the
distribution lists that mirror Entra ID groups.

Prerequisites:
1. Install Exchange Online Management module:
   Install-Module -Name ExchangeOnlineManagement

2. For app-only (unattended) authentication, you need:
   - Azure AD App Registration with Exchange.ManageAsApp permission
   - A certificate (self-signed or CA-signed) uploaded to the app
   - The certificate installed locally (or accessible as .pfx file)
   - App assigned "Exchange Recipient Administrator" role

References:
- https://learn.microsoft.com/en-us/powershell/exchange/app-only-auth-powershell-v2
- https://learn.microsoft.com/en-us/powershell/module/exchange/get-distributiongroupmember
"""

import asyncio
import json
import logging
import re
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

from autodl.core.config import DEFAULT_COMMAND_TIMEOUT_SECONDS, get_exchange_credentials
from autodl.core.normalize import (
    escape_single_quotes,
    normalize_identities,
    normalize_identity,
)

logger = logging.getLogger(__name__)

# Recipient kinds that are individually addressable mailboxes. Nested groups,
# contacts, mail users and resource mailboxes are left alone.
MAILBOX_RECIPIENT_TYPES = frozenset({"UserMailbox"})
RESOURCE_RECIPIENT_DETAILS = frozenset({"RoomMailbox", "EquipmentMailbox"})

ALREADY_MEMBER_PATTERNS = [r"already a member"]
NOT_MEMBER_PATTERNS = [r"isn't a member", r"is not a member", r"MemberNotFound"]

GROUP_SELECT_FIELDS = "Identity, DisplayName, PrimarySmtpAddress, RecipientTypeDetails"
MEMBER_SELECT_FIELDS = "PrimarySmtpAddress, RecipientType, RecipientTypeDetails"
RECIPIENT_SELECT_FIELDS = "PrimarySmtpAddress, EmailAddresses, RecipientType, RecipientTypeDetails"

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


class ExchangeCommandError(Exception):
    """A PowerShell call failed, timed out, or could not be started."""


def _matches_any(patterns: list[str], message: str) -> bool:
    return any(re.search(pattern, message, re.IGNORECASE) for pattern in patterns)


def _clean_error(stderr: str) -> str:
    """Strip color codes and collapse whitespace in PowerShell error output."""
    return " ".join(_ANSI_ESCAPE.sub("", stderr).split())


def _as_list(data: dict | list | None) -> list[dict]:
    """PowerShell emits a single object for one result and an array for many."""
    if not data:
        return []
    if isinstance(data, dict):
        return [data] if "raw" not in data else []
    return [item for item in data if isinstance(item, dict)]


def _recipient_kind(recipient: dict) -> str:
    return recipient.get("RecipientTypeDetails") or recipient.get("RecipientType") or "unknown"


def _smtp_addresses(recipient: dict) -> set[str]:
    """Primary and proxy SMTP addresses of a recipient, lowercased."""
    proxies = recipient.get("EmailAddresses") or []
    if isinstance(proxies, str):
        proxies = [proxies]

    addresses = [recipient.get("PrimarySmtpAddress")]
    for proxy in proxies:
        prefix, _, address = str(proxy).partition(":")
        if prefix.lower() == "smtp":
            addresses.append(address)
    return normalize_identities(addresses)


@dataclass
class ExchangeGroup:
    """Represents an Exchange Online distribution group."""

    identity: str
    display_name: str
    primary_smtp_address: str
    group_type: str  # RecipientTypeDetails, e.g. "MailUniversalDistributionGroup"


class ListMembers(NamedTuple):
    """Members of a distribution list split by recipient kind."""

    mailboxes: set[str]
    ignored: set[str]


class ExchangeOnlineClient:
    """Client for Exchange Online PowerShell operations.

    Every call opens its own Exchange Online connection in a fresh ``pwsh``
    process, bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        certificate_thumbprint: str | None = None,
        certificate_path: Path | str | None = None,
        certificate_password: str | None = None,
        organization: str | None = None,
        timeout: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the Exchange Online client.

        Args:
            certificate_thumbprint: Thumbprint of installed certificate (Windows)
            certificate_path: Path to .pfx certificate file (cross-platform)
            certificate_password: Password for the .pfx file
            organization: The organization domain (overrides env config)
            timeout: Seconds allowed for each PowerShell call
        """
        creds = get_exchange_credentials()
        self.tenant_id = creds.tenant_id
        self.client_id = creds.client_id
        self.organization = organization or creds.organization
        self.certificate_thumbprint = certificate_thumbprint or creds.certificate_thumbprint
        self.certificate_path = certificate_path or creds.certificate_path
        self.certificate_password = (
            certificate_password if certificate_password is not None else creds.certificate_password
        )
        self.timeout = timeout

    def _build_connect_command(self) -> str:
        """Build the Connect-ExchangeOnline command."""
        # Banner output is suppressed so it never mixes with the JSON result
        client_id = escape_single_quotes(self.client_id)
        organization = escape_single_quotes(self.organization)
        if self.certificate_path:
            cert_path = escape_single_quotes(str(self.certificate_path))
            # Key Vault certificates have an empty password
            if self.certificate_password:
                password = escape_single_quotes(self.certificate_password)
                secure_str = (
                    f"-CertificatePassword (ConvertTo-SecureString "
                    f"-String '{password}' -AsPlainText -Force) "
                )
            else:
                secure_str = ""
            return (
                f"Connect-ExchangeOnline "
                f"-AppId '{client_id}' "
                f"-CertificateFilePath '{cert_path}' "
                f"{secure_str}"
                f"-Organization '{organization}' -ShowBanner:$false *>$null"
            )
        elif self.certificate_thumbprint:
            thumbprint = escape_single_quotes(self.certificate_thumbprint)
            return (
                f"Connect-ExchangeOnline "
                f"-AppId '{client_id}' "
                f"-CertificateThumbprint '{thumbprint}' "
                f"-Organization '{organization}' -ShowBanner:$false *>$null"
            )
        else:
            raise ValueError("Either certificate_thumbprint or certificate_path must be provided")

    def _run_powershell(self, commands: list[str], parse_json: bool = True) -> dict | list | str:
        """Run PowerShell commands and return the result.

        Args:
            commands: List of PowerShell commands to execute
            parse_json: If True, parse output as JSON

        Returns:
            Parsed JSON (dict or list), or raw string output

        Raises:
            ExchangeCommandError: On a non-zero exit, timeout, or missing pwsh
        """
        full_script = [
            "$ErrorActionPreference = 'Stop'",
            "Import-Module ExchangeOnlineManagement",
            self._build_connect_command(),
            *commands,
            "Disconnect-ExchangeOnline -Confirm:$false *>$null",
        ]
        script = "; ".join(full_script)

        try:
            result = subprocess.run(  # noqa: S603
                ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script],  # noqa: S607
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExchangeCommandError(
                f"PowerShell command timed out after {self.timeout}s"
            ) from e
        except FileNotFoundError as e:
            raise ExchangeCommandError("PowerShell (pwsh) not found. Install PowerShell 7+.") from e

        if result.returncode != 0:
            message = _clean_error(result.stderr) or f"pwsh exited with code {result.returncode}"
            logger.debug(f"PowerShell error: {message}")
            raise ExchangeCommandError(message)

        output = result.stdout.strip()
        if not output:
            return {} if parse_json else ""

        if not parse_json:
            return output

        try:
            return json.loads(output)
        except json.JSONDecodeError:
            # Banner text may precede JSON
            json_start = min(
                (i for i in (output.find("{"), output.find("[")) if i != -1),
                default=-1,
            )
            if json_start != -1:
                try:
                    return json.loads(output[json_start:])
                except json.JSONDecodeError:
                    pass
            if "{" in output or "[" in output:
                logger.warning(f"Failed to parse JSON output: {output[:200]}")
            return {"raw": output}

    async def _run(self, commands: list[str], parse_json: bool = True) -> dict | list | str:
        """Run PowerShell in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self._run_powershell, commands, parse_json)

    def _to_exchange_group(self, data: dict, fallback_identity: str) -> ExchangeGroup:
        return ExchangeGroup(
            identity=data.get("Identity") or fallback_identity,
            display_name=data.get("DisplayName") or "",
            primary_smtp_address=data.get("PrimarySmtpAddress") or "",
            group_type=data.get("RecipientTypeDetails") or "",
        )

    async def get_distribution_group(self, identity: str) -> ExchangeGroup | None:
        """Get a distribution group by identity.

        Args:
            identity: Group name, alias, or email address

        Returns:
            ExchangeGroup if found, None otherwise
        """
        quoted = escape_single_quotes(identity)
        commands = [
            f"$group = Get-DistributionGroup -Identity '{quoted}' -ErrorAction SilentlyContinue",
            f"if ($group) {{ $group | Select-Object {GROUP_SELECT_FIELDS} | ConvertTo-Json }}",
        ]

        result = await self._run(commands)
        if isinstance(result, dict) and "Identity" in result:
            return self._to_exchange_group(result, identity)
        return None

    async def create_distribution_group(
        self,
        name: str,
        display_name: str,
        alias: str,
        primary_smtp_address: str,
    ) -> ExchangeGroup:
        """Create a new distribution group with no members.

        Args:
            name: Internal name of the group
            display_name: Display name shown in address book
            alias: Email alias (without domain)
            primary_smtp_address: Full email address

        Returns:
            Created ExchangeGroup

        Raises:
            ExchangeCommandError: If Exchange rejects the group (alias collision,
                invalid characters, quota) or returns nothing usable
        """
        create_cmd = " ".join(
            [
                f"New-DistributionGroup -Name '{escape_single_quotes(name)}'",
                f"-DisplayName '{escape_single_quotes(display_name)}'",
                f"-Alias '{escape_single_quotes(alias)}'",
                f"-PrimarySmtpAddress '{escape_single_quotes(primary_smtp_address)}'",
                "-Type 'Distribution'",
            ]
        )
        commands = [
            f"$group = {create_cmd}",
            f"$group | Select-Object {GROUP_SELECT_FIELDS} | ConvertTo-Json",
        ]

        result = await self._run(commands)
        if not isinstance(result, dict) or "Identity" not in result:
            raise ExchangeCommandError(f"New-DistributionGroup returned no group for {name}")

        logger.info(f"Created distribution group: {display_name} <{primary_smtp_address}>")
        return self._to_exchange_group(result, name)

    async def get_distribution_group_members(self, identity: str) -> ListMembers:
        """Get the members of a distribution group, split by recipient kind.

        Reads every member (no result size cap). User mailboxes are the
        members the sync manages; everything else is reported as ignored
        and left on the list untouched.

        Args:
            identity: Group name, alias, or email address

        Returns:
            ListMembers with lowercase mailbox and ignored addresses
        """
        commands = [
            f"Get-DistributionGroupMember -Identity '{escape_single_quotes(identity)}' "
            f"-ResultSize Unlimited | Select-Object {MEMBER_SELECT_FIELDS} "
            "| ConvertTo-Json",
        ]

        result = await self._run(commands)

        members = ListMembers(mailboxes=set(), ignored=set())
        for recipient in _as_list(result):
            address = normalize_identity(recipient.get("PrimarySmtpAddress"))
            if not address:
                continue
            if is_mailbox_recipient(recipient):
                members.mailboxes.add(address)
            else:
                logger.debug(f"Ignoring {address} in {identity}: {_recipient_kind(recipient)}")
                members.ignored.add(address)
        return members

    async def get_non_mailbox_recipients(self, addresses: Iterable[str]) -> set[str]:
        """Find which addresses Exchange resolves to something other than a user mailbox.

        Matches on primary and proxy SMTP addresses. Addresses Exchange
        cannot resolve are not returned.

        Args:
            addresses: Mail addresses to look up

        Returns:
            Set of lowercase addresses belonging to rooms, equipment,
            mail users, guests, contacts or groups
        """
        wanted = normalize_identities(addresses)
        if not wanted:
            return set()

        quoted = ", ".join(f"'{escape_single_quotes(a)}'" for a in sorted(wanted))
        commands = [
            f"@({quoted}) | ForEach-Object "
            "{ Get-Recipient -Identity $_ -ErrorAction SilentlyContinue } "
            f"| Select-Object {RECIPIENT_SELECT_FIELDS} | ConvertTo-Json",
        ]

        result = await self._run(commands)

        excluded: set[str] = set()
        for recipient in _as_list(result):
            if is_mailbox_recipient(recipient):
                continue
            matched = _smtp_addresses(recipient) & wanted
            for address in matched:
                logger.debug(f"{address} is not a user mailbox: {_recipient_kind(recipient)}")
            excluded |= matched
        return excluded

    async def add_distribution_group_member(self, identity: str, member: str) -> None:
        """Add a member to a distribution group.

        An "already a member" response counts as success.

        Args:
            identity: Group name, alias, or email address
            member: Member email address to add

        Raises:
            ExchangeCommandError: If Exchange rejects the member
        """
        commands = [
            f"Add-DistributionGroupMember -Identity '{escape_single_quotes(identity)}' "
            f"-Member '{escape_single_quotes(member)}' -BypassSecurityGroupManagerCheck",
        ]

        try:
            await self._run(commands, parse_json=False)
        except ExchangeCommandError as e:
            if _matches_any(ALREADY_MEMBER_PATTERNS, str(e)):
                logger.debug(f"{member} is already a member of {identity}")
                return
            raise

        logger.info(f"Added {member} to {identity}")

    async def remove_distribution_group_member(self, identity: str, member: str) -> None:
        """Remove a member from a distribution group without prompting.

        A "not a member" response counts as success.

        Args:
            identity: Group name, alias, or email address
            member: Member email address to remove

        Raises:
            ExchangeCommandError: If Exchange rejects the removal
        """
        commands = [
            f"Remove-DistributionGroupMember -Identity '{escape_single_quotes(identity)}' "
            f"-Member '{escape_single_quotes(member)}' -BypassSecurityGroupManagerCheck "
            "-Confirm:$false",
        ]

        try:
            await self._run(commands, parse_json=False)
        except ExchangeCommandError as e:
            if _matches_any(NOT_MEMBER_PATTERNS, str(e)):
                logger.debug(f"{member} is not a member of {identity}")
                return
            raise

        logger.info(f"Removed {member} from {identity}")

    async def check_module_installed(self) -> bool:
        """Check that pwsh runs and the ExchangeOnlineManagement module is available.

        Does not connect to Exchange Online.
        """
        script = (
            "if (Get-Module -ListAvailable -Name ExchangeOnlineManagement) "
            "{ 'INSTALLED' } else { 'MISSING' }"
        )
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.error(f"Could not run pwsh: {e}")
            return False
        return "INSTALLED" in result.stdout


def is_mailbox_recipient(recipient: dict) -> bool:
    """Check if a member record is an individually addressable user mailbox."""
    if recipient.get("RecipientType") not in MAILBOX_RECIPIENT_TYPES:
        return False
    return recipient.get("RecipientTypeDetails") not in RESOURCE_RECIPIENT_DETAILS
