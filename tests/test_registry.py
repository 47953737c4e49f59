"""Tests for the tool and resource registries and their YAML catalogs."""

import pytest

from shared.config import CATALOG_DIR, DEFAULT_SCOPES
from shared.models import DataResource, HttpMethod, ToolDefinition, WidgetResource


def make_tool(**overrides):
    fields = {
        "name": "get_thing",
        "description": "Get a thing",
        "endpoint_template": "/things",
        "http_method": HttpMethod.GET,
    }
    fields.update(overrides)
    return ToolDefinition(**fields)


class TestShippedCatalog:
    """Tests for the catalogs bundled with the package."""

    def test_tool_catalog_loads(self):
        """Test that the bundled tool catalog passes startup validation."""
        from fastnow_mcp.registry import ToolRegistry

        registry = ToolRegistry.from_yaml(CATALOG_DIR / "tools.yaml", known_scopes=DEFAULT_SCOPES)

        assert len(registry) == 76
        assert "start_fast" in registry
        assert "delete_food" in registry

    def test_tool_names_are_unique(self):
        """Test that every listed tool name is unique."""
        from fastnow_mcp.registry import ToolRegistry

        registry = ToolRegistry.from_yaml(CATALOG_DIR / "tools.yaml", known_scopes=DEFAULT_SCOPES)
        names = [tool.name for tool in registry.list_tools()]

        assert len(names) == len(set(names)) == len(registry)

    def test_linked_widgets_resolve(self):
        """Test that every linked resource URI names a shipped widget."""
        from fastnow_mcp.registry import ToolRegistry
        from fastnow_mcp.resources import ResourceRegistry

        tools = ToolRegistry.from_yaml(CATALOG_DIR / "tools.yaml", known_scopes=DEFAULT_SCOPES)
        resources = ResourceRegistry.from_yaml(
            CATALOG_DIR / "widgets.yaml",
            CATALOG_DIR / "data_resources.yaml",
            cdn_url="https://cdn.test",
        )

        for uri in tools.linked_resource_uris():
            assert resources.get_widget(uri) is not None, uri

    def test_shipped_tool_shapes(self):
        """Test a few catalog entries against their upstream endpoints."""
        from fastnow_mcp.registry import ToolRegistry

        registry = ToolRegistry.from_yaml(CATALOG_DIR / "tools.yaml", known_scopes=DEFAULT_SCOPES)

        start_fast = registry.get("start_fast")
        assert start_fast.http_method == HttpMethod.POST
        assert start_fast.endpoint_template == "/gpt-fasting/start"
        assert start_fast.required_scopes == frozenset({"write:fasting"})
        assert start_fast.input_schema["properties"]["goal_hours"]["maximum"] == 72

        delete_food = registry.get("delete_food")
        assert delete_food.http_method == HttpMethod.DELETE
        assert delete_food.endpoint_template == "/gpt-food/{food_id}"

        history = registry.get("get_date_history")
        assert history.required_scopes == frozenset({"read:fasting", "read:food", "read:activity"})

    def test_get_tools_are_read_only(self):
        """Test that every GET tool carries the read-only flag."""
        from fastnow_mcp.registry import ToolRegistry

        registry = ToolRegistry.from_yaml(CATALOG_DIR / "tools.yaml", known_scopes=DEFAULT_SCOPES)

        for tool in registry.list_tools():
            assert tool.read_only == (tool.http_method == HttpMethod.GET), tool.name

    def test_resource_catalogs_load(self):
        """Test that widgets and data resources load with derived HTML."""
        from fastnow_mcp.resources import ResourceRegistry

        resources = ResourceRegistry.from_yaml(
            CATALOG_DIR / "widgets.yaml",
            CATALOG_DIR / "data_resources.yaml",
            cdn_url="https://cdn.test/build/",
        )

        assert len(resources.widgets()) == 8
        assert len(resources.data_resources()) == 5

        widget = resources.get_widget("ui://widget/food-log.html")
        assert widget.mime_type == "text/html+skybridge"
        assert 'src="https://cdn.test/build/food-log.js"' in widget.html
        assert widget.csp == {
            "connect_domains": ["https://cdn.test"],
            "resource_domains": ["https://cdn.test"],
        }

        profile = resources.get("fastnow://user/profile")
        assert isinstance(profile, DataResource)
        assert profile.required_scopes == frozenset({"read:profile"})


class TestToolRegistry:
    """Tests for ToolRegistry validation and lookup."""

    def test_lookup(self, tools):
        """Test lookup by name."""
        assert tools.get("start_fast").name == "start_fast"
        assert tools.get("missing") is None
        assert "missing" not in tools

    def test_duplicate_name_raises(self):
        """Test that a duplicate tool name aborts loading."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        with pytest.raises(CatalogError, match="duplicate tool name"):
            ToolRegistry([make_tool(), make_tool()])

    def test_template_must_start_with_slash(self):
        """Test that a relative endpoint template is rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        with pytest.raises(CatalogError, match="must start with '/'"):
            ToolRegistry([make_tool(endpoint_template="things")])

    def test_unbalanced_braces_raise(self):
        """Test that unbalanced braces are rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        with pytest.raises(CatalogError, match="unbalanced braces"):
            ToolRegistry([make_tool(endpoint_template="/things/{id")])

    def test_placeholder_must_be_required_argument(self):
        """Test that a placeholder backed by an optional argument is rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        tool = make_tool(
            endpoint_template="/things/{thing_id}",
            input_schema={
                "type": "object",
                "properties": {"thing_id": {"type": "string"}},
                "required": [],
            },
        )

        with pytest.raises(CatalogError, match="must be a required argument"):
            ToolRegistry([tool])

    def test_placeholder_must_be_declared(self):
        """Test that a placeholder with no matching property is rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        with pytest.raises(CatalogError, match="not a declared argument"):
            ToolRegistry([make_tool(endpoint_template="/things/{thing_id}")])

    def test_invalid_schema_raises(self):
        """Test that a malformed input schema is rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        tool = make_tool(input_schema={"type": "object", "properties": {"n": {"type": "integr"}}})

        with pytest.raises(CatalogError):
            ToolRegistry([tool])

    def test_unknown_scope_raises(self):
        """Test that scopes outside the configured set are rejected."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        tool = make_tool(required_scopes=frozenset({"read:secrets"}))

        with pytest.raises(CatalogError, match="unknown scopes read:secrets"):
            ToolRegistry([tool], known_scopes=["read:fasting"])

    def test_registry_is_frozen(self, tools):
        """Test that the loaded table cannot be mutated."""
        with pytest.raises(TypeError):
            tools._tools["new_tool"] = make_tool(name="new_tool")
        assert not hasattr(tools, "register")

    def test_validate_arguments(self, tools):
        """Test argument validation against the input schema."""
        tool = tools.get("start_fast")

        ok, errors = tools.validate_arguments(tool, {"goal_hours": 16})
        assert ok
        assert errors == []

        ok, errors = tools.validate_arguments(tool, {"goal_hours": 100})
        assert not ok
        assert "goal_hours" in errors[0]

    def test_from_yaml_rejects_bad_entry(self, tmp_path):
        """Test that an incomplete catalog entry is reported by name."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.registry import ToolRegistry

        path = tmp_path / "tools.yaml"
        path.write_text("tools:\n  - name: broken\n    description: no endpoint\n")

        with pytest.raises(CatalogError, match="broken"):
            ToolRegistry.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path):
        """Test that a missing catalog file aborts startup."""
        from fastnow_mcp.registry import ToolRegistry

        with pytest.raises(FileNotFoundError):
            ToolRegistry.from_yaml(tmp_path / "absent.yaml")


class TestResourceRegistry:
    """Tests for ResourceRegistry."""

    def test_lookup_by_kind(self, resources):
        """Test that widgets and data resources are told apart."""
        assert resources.get_widget("ui://widget/fasting-progress.html") is not None
        assert resources.get_widget("fastnow://user/current-fast") is None
        assert isinstance(resources.get("fastnow://user/current-fast"), DataResource)
        assert resources.get("ui://widget/unknown.html") is None

    def test_describe_lists_data_resources_first(self, resources):
        """Test the protocol-visible listing."""
        listing = resources.describe()

        assert [entry["uri"] for entry in listing] == [
            "fastnow://user/current-fast",
            "ui://widget/fasting-progress.html",
        ]
        assert listing[0]["mimeType"] == "application/json"
        assert listing[1]["mimeType"] == "text/html+skybridge"

    def test_duplicate_uri_raises(self, widget):
        """Test that a URI may only be registered once."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.resources import ResourceRegistry

        with pytest.raises(CatalogError, match="Duplicate resource URI"):
            ResourceRegistry([widget, widget], [])

    def test_widget_uri_prefix_enforced(self):
        """Test that widgets live under the ui://widget/ namespace."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.resources import ResourceRegistry

        stray = WidgetResource(uri="https://example.com/w.html", name="Stray", html="<html></html>")

        with pytest.raises(CatalogError, match="must start with"):
            ResourceRegistry([stray], [])

    def test_widget_without_script_raises(self, tmp_path):
        """Test that a widget entry must name its script bundle."""
        from fastnow_mcp.errors import CatalogError
        from fastnow_mcp.resources import ResourceRegistry

        widgets = tmp_path / "widgets.yaml"
        widgets.write_text("widgets:\n  - uri: ui://widget/x.html\n    name: X\n")
        data = tmp_path / "data.yaml"
        data.write_text("resources: []\n")

        with pytest.raises(CatalogError, match="no script bundle"):
            ResourceRegistry.from_yaml(widgets, data, cdn_url="https://cdn.test")
