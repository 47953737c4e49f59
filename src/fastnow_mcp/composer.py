"""Response Composer.

Builds the ``content`` array of a ``tools/call`` result. The gateway does
not interpret the upstream payload; when the tool links a widget, the
payload's ``data`` field (or the whole payload) is handed to the widget
as ``structuredContent``.
"""

import json
from typing import Any, Optional

from fastnow_mcp.resources import ResourceRegistry


def structured_content(result: Any) -> Any:
    if isinstance(result, dict) and "data" in result:
        return result["data"]
    return result


def compose(
    result: Any,
    linked_resource_uri: Optional[str],
    resources: ResourceRegistry,
) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = [
        {"type": "text", "text": json.dumps(result, indent=2)}
    ]

    widget = resources.get_widget(linked_resource_uri) if linked_resource_uri else None
    if widget is not None:
        content.append({
            "type": "resource",
            "resource": {
                "uri": widget.uri,
                "mimeType": widget.mime_type,
                "text": widget.html,
            },
            "structuredContent": structured_content(result),
        })

    return content
