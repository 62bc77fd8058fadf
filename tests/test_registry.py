"""Tests for tool and resource exposure."""

import pytest

from catalog import ConfigurationError, PolicyAuthorizer
from shared.models import ActionType, McpOptions

from conftest import build_backend


MUSIC_TOOLS = [
    "list_artists",
    "list_artists_paginated",
    "filter_artists",
    "create_artist",
    "update_artist",
    "update_artist_by_name",
    "destroy_artist",
    "shout",
    "ping_artist",
    "broken_tool",
    "list_artists_with_meta",
    "artist_dashboard",
]


@pytest.fixture
def registry(backend):
    from mcp_server.registry import ExposureRegistry

    return ExposureRegistry(backend)


def tool_names(registry, **options):
    return [tool.name for tool in registry.exposed_tools(McpOptions(**options))]


class TestNameFilter:
    """Tests for name filters."""

    @pytest.mark.parametrize("allowed,expected", [
        (None, True),
        ("*", True),
        (["*"], True),
        ([], False),
        (["shout"], True),
        (["other"], False),
    ])
    def test_name_allowed(self, allowed, expected):
        """Test each filter form."""
        from mcp_server.registry import name_allowed

        assert name_allowed("shout", allowed) is expected


class TestExposedTools:
    """Tests for tool exposure."""

    def test_app_exposes_its_domains(self, registry):
        """Test that an app exposes every tool of its domains, in declaration order."""
        assert tool_names(registry, app="music_app") == MUSIC_TOOLS

    def test_tools_are_resolved(self, registry, options):
        """Test that exposed tools carry their domain and action."""
        tool = registry.find_tool("create_artist", options)

        assert tool.domain == "music"
        assert tool.resolved_action.type == ActionType.CREATE

    def test_tool_name_filter(self, registry):
        """Test restricting tools by name, including a single bare name."""
        assert tool_names(registry, app="music_app", tools=["shout", "ping_artist"]) == ["shout", "ping_artist"]
        assert tool_names(registry, app="music_app", tools="shout") == ["shout"]
        assert tool_names(registry, app="music_app", tools=[]) == []

    def test_exclude_actions(self, registry):
        """Test that excluded actions are never exposed."""
        names = tool_names(registry, app="music_app", exclude_actions=[("Artist", "destroy")])

        assert "destroy_artist" not in names
        assert len(names) == len(MUSIC_TOOLS) - 1

    def test_action_selectors(self, registry):
        """Test selecting tools by entity and action."""
        names = tool_names(registry, actions=[("Artist", ["read"])])

        assert names == ["list_artists", "filter_artists", "list_artists_with_meta", "artist_dashboard"]

    def test_selectors_reach_domains_outside_the_app(self, registry):
        """Test that selectors can expose entities of any domain."""
        assert tool_names(registry, actions=[("Job", "*")]) == ["list_jobs"]
        assert "list_jobs" not in tool_names(registry, app="music_app")

    def test_selected_tools_are_deduplicated(self, registry):
        """Test that overlapping selectors list a tool once."""
        names = tool_names(registry, actions=[("Artist", ["read"]), ("Artist", "*")])

        assert names.count("list_artists") == 1
        assert len(names) == len(MUSIC_TOOLS)

    @pytest.mark.parametrize("filters", [
        {"app": "music_app"},
        {"app": "music_app", "tools": ["shout", "list_artists", "list_jobs"]},
        {"actions": [("Artist", ["read", "update"])], "exclude_actions": [("Artist", "update")]},
    ])
    def test_filtering_is_idempotent(self, registry, filters):
        """Test that applying the same filter twice, or to its own result, gives the same tools."""
        first = tool_names(registry, **filters)
        second = tool_names(registry, **filters)
        refiltered = tool_names(registry, **{**filters, "tools": first})

        assert first == second
        assert refiltered == first

    def test_selector_without_tool(self, registry):
        """Test that selecting an action with no tool is a configuration error."""
        with pytest.raises(ConfigurationError, match="Cannot use an action that is not exposed as a tool"):
            tool_names(registry, actions=[("Artist", ["artist_card"])])

    def test_selector_for_unknown_entity(self, registry):
        """Test that selecting an entity without a domain is a configuration error."""
        with pytest.raises(ConfigurationError, match="does not have a domain"):
            tool_names(registry, actions=[("Ghost", "*")])

    def test_app_required_without_actions(self, registry):
        """Test that options need either an app or selectors."""
        with pytest.raises(ConfigurationError, match="Must specify `app`"):
            tool_names(registry)

    def test_unknown_app_exposes_nothing(self, registry):
        """Test that an app with no domains lists no tools."""
        assert tool_names(registry, app="other_app") == []

    def test_tools_filtered_by_permission(self, catalog):
        """Test that tools the actor may not run are hidden."""
        from mcp_server.registry import ExposureRegistry

        authorizer = PolicyAuthorizer({
            "Artist": lambda actor, action, tenant: action.type == ActionType.READ or actor is not None,
        })
        registry = ExposureRegistry(build_backend(catalog, authorizer))

        anonymous = tool_names(registry, app="music_app")
        signed_in = tool_names(registry, app="music_app", actor={"id": "u-1"})

        assert anonymous == [
            "list_artists", "list_artists_paginated", "filter_artists",
            "list_artists_with_meta", "artist_dashboard",
        ]
        assert signed_in == MUSIC_TOOLS

    def test_authorizer_errors_deny_access(self, catalog):
        """Test that a failing permission check hides the tool."""
        from mcp_server.registry import ExposureRegistry

        def policy(actor, action, tenant):
            raise RuntimeError("policy store unavailable")

        registry = ExposureRegistry(build_backend(catalog, PolicyAuthorizer({"Artist": policy})))

        assert tool_names(registry, app="music_app") == []

    def test_ui_shortcut_folded_into_meta(self, registry, options):
        """Test that a tool's ui reference becomes `_meta.ui.resourceUri`."""
        dashboard = registry.find_tool("artist_dashboard", options)
        plain = registry.find_tool("list_artists", options)

        assert dashboard.meta == {"ui": {"resourceUri": "ui://test/app.html"}}
        assert dashboard.ui is None
        assert dashboard.has_meta
        assert not plain.has_meta

    def test_find_tool_exact_name(self, registry, options):
        """Test that lookups use exact names."""
        assert registry.find_tool("list_artist", options) is None
        assert registry.find_tool("list_artists", options.for_request(tools=["shout"])) is None


class TestExposedResources:
    """Tests for resource exposure."""

    def test_action_resources(self, registry, options):
        """Test action resources are listed with description fallbacks."""
        resources = {resource.name: resource for resource in registry.exposed_action_resources(options)}

        assert list(resources) == [
            "artist_card",
            "artist_json",
            "artist_with_params",
            "failing_resource",
            "artist_card_custom",
            "actor_test_resource",
        ]
        assert resources["artist_card"].description == "Get an artist card UI representation."
        assert resources["artist_card_custom"].description == "Custom description from declaration"
        assert resources["failing_resource"].mime_type == "text/plain"

    def test_ui_resources(self, registry, options):
        """Test UI resources follow the action resources."""
        names = [resource.name for resource in registry.exposed_resources(options)]

        assert names[-3:] == ["test_app", "test_app_with_opts", "missing_file_app"]

    def test_resource_name_filter(self, registry):
        """Test restricting resources by name."""
        options = McpOptions(app="music_app", mcp_resources=["artist_json", "test_app"])

        assert [resource.name for resource in registry.exposed_resources(options)] == ["artist_json", "test_app"]
        assert registry.exposed_resources(options.for_request(mcp_resources=[])) == []

    def test_selectors_restrict_action_resources(self, registry):
        """Test that action selectors also select action resources."""
        options = McpOptions(actions=[("Artist", ["artist_card"])])

        names = [resource.name for resource in registry.exposed_action_resources(options)]

        assert names == ["artist_card", "artist_card_custom"]

    def test_excluded_resource_actions(self, registry):
        """Test that excluded actions hide their resources."""
        options = McpOptions(app="music_app", exclude_actions=[("Artist", ["failing_action"])])

        names = [resource.name for resource in registry.exposed_action_resources(options)]

        assert "failing_resource" not in names

    def test_find_resource_by_uri(self, registry, options):
        """Test lookup by exact URI."""
        assert registry.find_resource("file://data/artist.json", options).name == "artist_json"
        assert registry.find_resource("ui://test/app.html", options).name == "test_app"
        assert registry.find_resource("file://data/artist", options) is None
