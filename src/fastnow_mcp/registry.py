"""Tool Registry for the FastNow MCP gateway.

Holds the declarative tool catalog. The catalog is loaded from YAML once
at startup, validated as a whole, and frozen: there is no way to add or
remove tools afterwards.
"""

import re
from collections.abc import Iterable
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

from pydantic import ValidationError

from shared.config import load_yaml_list
from shared.logging import get_logger
from shared.models import ToolDefinition
from shared.schema import check_schema, declared_fields, required_fields, validate_schema
from fastnow_mcp.errors import CatalogError

logger = get_logger(__name__)

PLACEHOLDER = re.compile(r"\{([^{}]*)\}")
IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def template_placeholders(template: str) -> list[str]:
    """Names of the ``{placeholder}`` segments in an endpoint template."""
    return PLACEHOLDER.findall(template)


def check_endpoint_template(tool: ToolDefinition) -> list[str]:
    """Problems with a tool's endpoint template, empty when well formed."""
    template = tool.endpoint_template
    problems = []

    if not template.startswith("/"):
        problems.append("endpoint template must start with '/'")

    stripped = PLACEHOLDER.sub("", template)
    if "{" in stripped or "}" in stripped:
        problems.append("endpoint template has unbalanced braces")

    declared = declared_fields(tool.input_schema)
    required = required_fields(tool.input_schema)
    for name in template_placeholders(template):
        if not IDENTIFIER.match(name):
            problems.append(f"placeholder '{{{name}}}' is not an identifier")
        elif name not in declared:
            problems.append(f"placeholder '{{{name}}}' is not a declared argument")
        elif name not in required:
            problems.append(f"placeholder '{{{name}}}' must be a required argument")

    return problems


class ToolRegistry:
    """
    Immutable lookup table of tool definitions.

    Responsibilities:
    - Validate the catalog (unique names, templates, schemas, scopes)
    - Lookup tools by name in O(1)
    - Project tools into the protocol-visible listing
    """

    def __init__(
        self,
        tools: Iterable[ToolDefinition],
        known_scopes: Optional[Iterable[str]] = None,
    ) -> None:
        by_name: dict[str, ToolDefinition] = {}
        problems: list[str] = []
        scopes = set(known_scopes) if known_scopes is not None else None

        for tool in tools:
            if tool.name in by_name:
                problems.append(f"{tool.name}: duplicate tool name")
                continue
            by_name[tool.name] = tool

            problems.extend(f"{tool.name}: {p}" for p in check_endpoint_template(tool))
            problems.extend(f"{tool.name}: {p}" for p in check_schema(tool.input_schema))
            if scopes is not None:
                unknown = tool.required_scopes - scopes
                if unknown:
                    problems.append(
                        f"{tool.name}: unknown scopes {', '.join(sorted(unknown))}"
                    )

        if problems:
            raise CatalogError("Invalid tool catalog:\n  " + "\n  ".join(problems))

        self._tools = MappingProxyType(by_name)
        logger.info("Tool registry loaded", tool_count=len(by_name))

    @classmethod
    def from_yaml(
        cls,
        path: str | Path,
        known_scopes: Optional[Iterable[str]] = None,
    ) -> "ToolRegistry":
        """Build the registry from the ``tools`` list of a YAML catalog."""
        tools = []
        for index, entry in enumerate(load_yaml_list(path, "tools")):
            try:
                tools.append(ToolDefinition(**entry))
            except (TypeError, ValidationError) as e:
                name = entry.get("name", f"#{index}") if isinstance(entry, dict) else f"#{index}"
                raise CatalogError(f"Invalid tool entry {name}: {e}") from e
        return cls(tools, known_scopes=known_scopes)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def linked_resource_uris(self) -> set[str]:
        return {t.linked_resource_uri for t in self._tools.values() if t.linked_resource_uri}

    def validate_arguments(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """Validate call arguments against the tool's input schema."""
        return validate_schema(arguments, tool.input_schema)
