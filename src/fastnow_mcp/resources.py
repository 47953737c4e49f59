"""Resource Registry for the FastNow MCP gateway.

Two kinds of resources are addressable by URI:

- UI widgets (``ui://widget/...``): static HTML documents rendered once at
  load time. Reading them needs no authentication.
- Data resources (``fastnow://user/...``): computed per request by the
  upstream backend on behalf of the authenticated user.
"""

from collections.abc import Iterable
from pathlib import Path
from types import MappingProxyType
from typing import Optional, Union
from urllib.parse import urlsplit

from pydantic import ValidationError

from shared.config import load_yaml_list
from shared.logging import get_logger
from shared.models import DataResource, WidgetResource
from fastnow_mcp.errors import CatalogError

logger = get_logger(__name__)

WIDGET_URI_PREFIX = "ui://widget/"

WIDGET_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="stylesheet" href="{cdn}/style.css">
</head>
<body>
  <div id="fastnow-root"></div>
  <script type="module" src="{cdn}/{script}"></script>
</body>
</html>"""

Resource = Union[WidgetResource, DataResource]


def render_widget_html(cdn_url: str, script: str) -> str:
    return WIDGET_HTML_TEMPLATE.format(cdn=cdn_url.rstrip("/"), script=script)


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


class ResourceRegistry:
    """Immutable URI-keyed table of widgets and data resources."""

    def __init__(
        self,
        widgets: Iterable[WidgetResource],
        data_resources: Iterable[DataResource],
    ) -> None:
        entries: dict[str, Resource] = {}
        for resource in [*widgets, *data_resources]:
            if resource.uri in entries:
                raise CatalogError(f"Duplicate resource URI: {resource.uri}")
            if isinstance(resource, WidgetResource) and not resource.uri.startswith(WIDGET_URI_PREFIX):
                raise CatalogError(f"Widget URI must start with {WIDGET_URI_PREFIX}: {resource.uri}")
            if isinstance(resource, DataResource) and resource.uri.startswith(WIDGET_URI_PREFIX):
                raise CatalogError(f"Data resource cannot use the widget scheme: {resource.uri}")
            entries[resource.uri] = resource

        self._entries = MappingProxyType(entries)
        logger.info(
            "Resource registry loaded",
            widgets=len(self.widgets()),
            data_resources=len(self.data_resources()),
        )

    @classmethod
    def from_yaml(
        cls,
        widgets_path: str | Path,
        data_resources_path: str | Path,
        cdn_url: str,
    ) -> "ResourceRegistry":
        """
        Load both catalogs.

        Widget entries name a ``script`` bundle; the HTML document and its
        content-security-policy domains are derived from ``cdn_url``.
        """
        cdn_origin = _origin(cdn_url)
        widgets = []
        for entry in load_yaml_list(widgets_path, "widgets"):
            entry = dict(entry)
            script = entry.pop("script", None)
            if not script:
                raise CatalogError(f"Widget {entry.get('uri')} has no script bundle")
            entry.setdefault("connect_domains", [cdn_origin])
            entry.setdefault("resource_domains", [cdn_origin])
            try:
                widgets.append(WidgetResource(html=render_widget_html(cdn_url, script), **entry))
            except (TypeError, ValidationError) as e:
                raise CatalogError(f"Invalid widget entry {entry.get('uri')}: {e}") from e

        data_resources = []
        for entry in load_yaml_list(data_resources_path, "resources"):
            try:
                data_resources.append(DataResource(**entry))
            except (TypeError, ValidationError) as e:
                raise CatalogError(f"Invalid data resource {entry.get('uri')}: {e}") from e

        return cls(widgets, data_resources)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, uri: str) -> Optional[Resource]:
        return self._entries.get(uri)

    def get_widget(self, uri: str) -> Optional[WidgetResource]:
        resource = self._entries.get(uri)
        return resource if isinstance(resource, WidgetResource) else None

    def widgets(self) -> list[WidgetResource]:
        return [r for r in self._entries.values() if isinstance(r, WidgetResource)]

    def data_resources(self) -> list[DataResource]:
        return [r for r in self._entries.values() if isinstance(r, DataResource)]

    def describe(self) -> list[dict[str, str]]:
        """Protocol-visible listing: data resources first, then widgets."""
        return [
            {
                "uri": r.uri,
                "name": r.name,
                "description": r.description,
                "mimeType": r.mime_type,
            }
            for r in [*self.data_resources(), *self.widgets()]
        ]
