"""Shared fixtures: a small music application served from memory."""

import json

import pytest

from catalog import InMemoryRunner, JsonSerializer, McpBackend, PolicyAuthorizer, StaticCatalog
from shared.models import (
    ActionDefinition,
    ActionResource,
    ActionType,
    DomainDefinition,
    EntityDefinition,
    FieldDefinition,
    FieldKind,
    Identity,
    McpOptions,
    Pagination,
    Tool,
    UiResource,
)


ALICE_ID = "00000000-0000-0000-0000-000000000001"
BOB_ID = "00000000-0000-0000-0000-000000000002"
CHARLES_ID = "00000000-0000-0000-0000-000000000003"


def string_action(name: str, description: str | None = None, **kwargs) -> ActionDefinition:
    return ActionDefinition(
        name=name,
        type=ActionType.ACTION,
        description=description,
        returns="string",
        **kwargs,
    )


def build_artist() -> EntityDefinition:
    return EntityDefinition(
        name="Artist",
        description="A recording artist",
        fields=[
            FieldDefinition(name="id", type="uuid", allow_nil=False),
            FieldDefinition(name="name", type="string", description="Artist name"),
            FieldDefinition(name="bio", type="string"),
            FieldDefinition(name="albums_count", type="integer", constraints={"min": 0}),
            FieldDefinition(name="secret", type="string", public=False),
            FieldDefinition(name="name_length", type="integer", kind=FieldKind.CALCULATION),
            FieldDefinition(
                name="greeting",
                type="string",
                kind=FieldKind.CALCULATION,
                arguments=[FieldDefinition(name="prefix", type="string", allow_nil=False)],
            ),
            FieldDefinition(name="genre", type="string", filterable=False, sortable=False),
        ],
        identities=[Identity(name="unique_name", keys=["name"])],
        actions=[
            ActionDefinition(name="read", type=ActionType.READ),
            ActionDefinition(
                name="read_paginated",
                type=ActionType.READ,
                pagination=Pagination(default_limit=10, max_page_size=2),
            ),
            ActionDefinition(
                name="create",
                type=ActionType.CREATE,
                accept=["id", "name", "bio", "albums_count"],
            ),
            ActionDefinition(name="update", type=ActionType.UPDATE, accept=["name", "bio", "albums_count"]),
            ActionDefinition(name="destroy", type=ActionType.DESTROY),
            string_action("artist_card", "Get an artist card UI representation."),
            string_action(
                "artist_card_with_params",
                "Get an artist card with custom template.",
                arguments=[FieldDefinition(name="template", type="string", allow_nil=False)],
            ),
            string_action("failing_action", "Action that always fails for testing."),
            string_action("artist_json", "Get artist data as JSON string."),
            string_action("actor_test", "Returns the actor ID if present."),
            string_action(
                "shout",
                arguments=[FieldDefinition(name="text", type="string", allow_nil=False)],
            ),
            ActionDefinition(name="ping", type=ActionType.ACTION),
            string_action("broken"),
        ],
    )


def build_music_domain(html_dir) -> DomainDefinition:
    return DomainDefinition(
        name="music",
        entities=[build_artist()],
        tools=[
            Tool(name="list_artists", entity="Artist", action="read"),
            Tool(name="list_artists_paginated", entity="Artist", action="read_paginated"),
            Tool(
                name="filter_artists",
                entity="Artist",
                action="read",
                action_parameters=["filter"],
                description="  Find artists by field values  ",
            ),
            Tool(name="create_artist", entity="Artist", action="create", load=["name_length"]),
            Tool(name="update_artist", entity="Artist", action="update"),
            Tool(name="update_artist_by_name", entity="Artist", action="update", identity="unique_name"),
            Tool(name="destroy_artist", entity="Artist", action="destroy"),
            Tool(
                name="shout",
                entity="Artist",
                action="shout",
                description="Shout some text",
                arguments=[FieldDefinition(name="volume", type="integer", allow_nil=False)],
            ),
            Tool(name="ping_artist", entity="Artist", action="ping"),
            Tool(name="broken_tool", entity="Artist", action="broken"),
            Tool(
                name="list_artists_with_meta",
                entity="Artist",
                action="read",
                _meta={"openai/outputTemplate": "ui://widget/artists.html"},
            ),
            Tool(name="artist_dashboard", entity="Artist", action="read", ui="test_app"),
        ],
        resources=[
            ActionResource(
                name="artist_card",
                uri="file://ui/artist_card.html",
                title="Artist Card",
                mime_type="text/html",
                entity="Artist",
                action="artist_card",
            ),
            ActionResource(
                name="artist_json",
                uri="file://data/artist.json",
                title="Artist JSON",
                mime_type="application/json",
                entity="Artist",
                action="artist_json",
            ),
            ActionResource(
                name="artist_with_params",
                uri="file://ui/custom_card.html",
                title="Artist Card With Params",
                mime_type="text/html",
                entity="Artist",
                action="artist_card_with_params",
            ),
            ActionResource(
                name="failing_resource",
                uri="file://fail/test",
                title="Failing Resource",
                entity="Artist",
                action="failing_action",
            ),
            ActionResource(
                name="artist_card_custom",
                uri="file://ui/custom_description.html",
                title="Artist Card Custom",
                description="Custom description from declaration",
                mime_type="text/html",
                entity="Artist",
                action="artist_card",
            ),
            ActionResource(
                name="actor_test_resource",
                uri="file://test/actor",
                title="Actor Test",
                entity="Artist",
                action="actor_test",
            ),
            UiResource(
                name="test_app",
                uri="ui://test/app.html",
                html_path=str(html_dir / "app.html"),
                title="Test App",
                description="A test UI app",
            ),
            UiResource(
                name="test_app_with_opts",
                uri="ui://test/csp_app.html",
                html_path=str(html_dir / "csp_app.html"),
                csp={"connect_domains": ["api.example.com"], "resource_domains": ["cdn.example.com"]},
                permissions={"camera": True, "clipboard_write": True, "microphone": False},
                domain="test.example.com",
                prefers_border=True,
            ),
            UiResource(
                name="missing_file_app",
                uri="ui://test/missing.html",
                html_path=str(html_dir / "missing.html"),
                domain=None,
            ),
        ],
    )


def build_ops_domain() -> DomainDefinition:
    job = EntityDefinition(
        name="Job",
        fields=[
            FieldDefinition(name="id", type="uuid", allow_nil=False),
            FieldDefinition(name="status", type="string", constraints={"one_of": ["queued", "done"]}),
        ],
        actions=[ActionDefinition(name="read", type=ActionType.READ)],
    )
    return DomainDefinition(
        name="ops",
        entities=[job],
        tools=[Tool(name="list_jobs", entity="Job", action="read")],
    )


def build_backend(catalog: StaticCatalog, authorizer=None) -> McpBackend:
    runner = InMemoryRunner(catalog)
    runner.seed("Artist", [
        {"id": ALICE_ID, "name": "Alice Coltrane", "bio": "Harpist", "albums_count": 12, "secret": "s1", "genre": "jazz"},
        {"id": BOB_ID, "name": "Bob Dylan", "bio": "Songwriter", "albums_count": 39, "secret": "s2", "genre": "folk"},
        {"id": CHARLES_ID, "name": "Charles Mingus", "bio": None, "albums_count": 20, "secret": "s3", "genre": "jazz"},
    ])
    runner.seed("Job", [{"id": "10000000-0000-0000-0000-000000000001", "status": "queued"}])

    def actor_test(input, options):
        if options.actor is None:
            return "no_actor"
        return f"actor:{options.actor['id']}"

    def failing(input, options):
        raise RuntimeError("Intentional test failure")

    runner.register_action("Artist", "artist_card", lambda input, options: "<div>Artist Card</div>")
    runner.register_action(
        "Artist", "artist_card_with_params", lambda input, options: f"<div>{input['template']}</div>"
    )
    runner.register_action("Artist", "failing_action", failing)
    runner.register_action(
        "Artist", "artist_json", lambda input, options: json.dumps({"artist": "Test Artist", "genre": "Rock"})
    )
    runner.register_action("Artist", "actor_test", actor_test)
    runner.register_action("Artist", "shout", lambda input, options: input["text"].upper())
    runner.register_action("Artist", "ping", lambda input, options: None)
    runner.register_action("Artist", "broken", failing)
    runner.register_calculation("Artist", "name_length", lambda record: len(record.get("name") or ""))

    return McpBackend(
        catalog=catalog,
        runner=runner,
        authorizer=authorizer or PolicyAuthorizer(),
        serializer=JsonSerializer(catalog),
    )


@pytest.fixture
def html_dir(tmp_path):
    (tmp_path / "app.html").write_text("<html><body>Test App</body></html>")
    (tmp_path / "csp_app.html").write_text("<html><body>CSP App</body></html>")
    return tmp_path


@pytest.fixture
def catalog(html_dir):
    return StaticCatalog(
        [build_music_domain(html_dir), build_ops_domain()],
        apps={"music_app": ["music"]},
    )


@pytest.fixture
def backend(catalog):
    return build_backend(catalog)


@pytest.fixture
def options():
    return McpOptions(app="music_app")


@pytest.fixture
def resolve_tool(backend, options):
    """Look up an exposed, resolved tool by name."""
    from mcp_server.registry import ExposureRegistry

    registry = ExposureRegistry(backend)

    def resolve(name, opts=None):
        tool = registry.find_tool(name, opts or options)
        assert tool is not None, f"tool {name} is not exposed"
        return tool

    return resolve
