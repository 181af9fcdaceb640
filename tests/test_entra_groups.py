"""Tests for autodl.entra.groups."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from autodl.entra.groups import USER_ODATA_TYPE, EntraGroup, EntraGroupManager


def make_graph_group(
    group_id="group-123",
    display_name="Finance-Team",
    description="Finance staff",
    mail=None,
    mail_enabled=False,
    security_enabled=True,
):
    """Helper to create a mock Graph Group object."""
    group = MagicMock()
    group.id = group_id
    group.display_name = display_name
    group.description = description
    group.mail = mail
    group.mail_enabled = mail_enabled
    group.security_enabled = security_enabled
    return group


def make_member(member_id, mail=None, display_name=None, odata_type=USER_ODATA_TYPE):
    """Helper to create a mock Graph directory object."""
    member = MagicMock()
    member.id = member_id
    member.mail = mail
    member.display_name = display_name or member_id
    member.odata_type = odata_type
    return member


def make_page(members, next_link=None):
    """Helper to create a Graph collection response page."""
    page = MagicMock()
    page.value = members
    page.odata_next_link = next_link
    return page


@pytest.fixture
def mock_client():
    """Create a mock Graph client."""
    return MagicMock()


@pytest.fixture
def manager(mock_client):
    """Create an EntraGroupManager around the mock client."""
    return EntraGroupManager(mock_client)


class TestGetGroupByName:
    """Tests for get_group_by_name method."""

    async def test_returns_group(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(return_value=make_page([make_graph_group()]))

        group = await manager.get_group_by_name("Finance-Team")

        assert group == EntraGroup(
            id="group-123",
            display_name="Finance-Team",
            description="Finance staff",
            mail=None,
            mail_enabled=False,
            security_enabled=True,
        )

    async def test_filters_by_exact_display_name(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(return_value=make_page([]))

        await manager.get_group_by_name("Finance-Team")

        config = mock_client.groups.get.call_args.kwargs["request_configuration"]
        assert config.query_parameters.filter == "displayName eq 'Finance-Team'"

    async def test_escapes_quotes_in_filter(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(return_value=make_page([]))

        await manager.get_group_by_name("O'Brien Team")

        config = mock_client.groups.get.call_args.kwargs["request_configuration"]
        assert config.query_parameters.filter == "displayName eq 'O''Brien Team'"

    async def test_not_found_returns_none(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(return_value=make_page([]))

        assert await manager.get_group_by_name("Missing") is None

    async def test_none_result_returns_none(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(return_value=None)

        assert await manager.get_group_by_name("Missing") is None

    async def test_duplicate_names_use_first(self, manager, mock_client, caplog):
        mock_client.groups.get = AsyncMock(
            return_value=make_page(
                [make_graph_group(group_id="first"), make_graph_group(group_id="second")]
            )
        )

        group = await manager.get_group_by_name("Finance-Team")

        assert group.id == "first"
        assert "2 groups named 'Finance-Team'" in caplog.text

    async def test_case_mismatch_is_not_a_match(self, manager, mock_client, caplog):
        mock_client.groups.get = AsyncMock(
            return_value=make_page([make_graph_group(display_name="finance-team")])
        )

        assert await manager.get_group_by_name("Finance-Team") is None
        assert "differs in case" in caplog.text

    async def test_exact_case_preferred_over_other_casing(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(
            return_value=make_page(
                [
                    make_graph_group(group_id="lower", display_name="finance-team"),
                    make_graph_group(group_id="exact", display_name="Finance-Team"),
                ]
            )
        )

        group = await manager.get_group_by_name("Finance-Team")

        assert group.id == "exact"

    async def test_api_error_propagates(self, manager, mock_client):
        mock_client.groups.get = AsyncMock(side_effect=Exception("API Error"))

        with pytest.raises(Exception, match="API Error"):
            await manager.get_group_by_name("Finance-Team")


class TestGetMemberIdentities:
    """Tests for get_member_identities method."""

    @pytest.fixture
    def members_builder(self, mock_client):
        builder = MagicMock()
        mock_client.groups.by_group_id.return_value.members = builder
        return builder

    async def test_returns_normalized_mail(self, manager, mock_client, members_builder):
        members_builder.get = AsyncMock(
            return_value=make_page(
                [
                    make_member("u1", mail="Alice@Contoso.com"),
                    make_member("u2", mail="bob@contoso.com"),
                ]
            )
        )

        result = await manager.get_member_identities("group-123")

        assert result == {"alice@contoso.com", "bob@contoso.com"}
        mock_client.groups.by_group_id.assert_called_with("group-123")

    async def test_follows_every_page(self, manager, members_builder):
        first = make_page([make_member("u1", mail="a@x.com")], next_link="https://graph/next1")
        second = make_page([make_member("u2", mail="b@x.com")], next_link="https://graph/next2")
        third = make_page([make_member("u3", mail="c@x.com")])

        members_builder.get = AsyncMock(return_value=first)
        next_builders = {
            "https://graph/next1": MagicMock(get=AsyncMock(return_value=second)),
            "https://graph/next2": MagicMock(get=AsyncMock(return_value=third)),
        }
        members_builder.with_url = MagicMock(side_effect=lambda url: next_builders[url])

        result = await manager.get_member_identities("group-123")

        assert result == {"a@x.com", "b@x.com", "c@x.com"}
        assert members_builder.with_url.call_count == 2

    async def test_requests_large_pages(self, manager, members_builder):
        members_builder.get = AsyncMock(return_value=make_page([]))

        await manager.get_member_identities("group-123")

        config = members_builder.get.call_args.kwargs["request_configuration"]
        assert config.query_parameters.top == 999
        assert "mail" in config.query_parameters.select

    async def test_skips_members_without_mail(self, manager, members_builder, caplog):
        members_builder.get = AsyncMock(
            return_value=make_page(
                [
                    make_member("u1", mail="a@x.com"),
                    make_member("u2", mail=None, display_name="No Mailbox"),
                ]
            )
        )

        result = await manager.get_member_identities("group-123")

        assert result == {"a@x.com"}
        assert "No Mailbox" in caplog.text
        assert "no mail address" in caplog.text

    async def test_skips_non_user_members(self, manager, members_builder, caplog):
        members_builder.get = AsyncMock(
            return_value=make_page(
                [
                    make_member("u1", mail="a@x.com"),
                    make_member(
                        "g1",
                        mail="nested@x.com",
                        display_name="Nested Group",
                        odata_type="#microsoft.graph.group",
                    ),
                    make_member("d1", odata_type="#microsoft.graph.device"),
                ]
            )
        )

        result = await manager.get_member_identities("group-123")

        assert result == {"a@x.com"}
        assert "Skipping non-user member Nested Group" in caplog.text

    async def test_empty_group(self, manager, members_builder):
        members_builder.get = AsyncMock(return_value=make_page(None))

        assert await manager.get_member_identities("group-123") == set()
