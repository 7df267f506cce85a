"""Widget catalog.

The catalog is built once at startup from a literal list of widgets and is
read-only afterwards. Each widget is reachable both by its identifier (which is
also its tool name) and by its template URI (which is also its resource URI).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

MIME_TYPE = "text/html+skybridge"

ASSETS_BASE_URL = "https://persistent.oaistatic.com/ecosystem-built-assets"
ASSETS_VERSION = "0038"


@dataclass(frozen=True)
class WidgetDescriptor:
    id: str
    title: str
    template_uri: str
    invoking: str
    """Status label shown while the tool is running."""
    invoked: str
    """Status label shown once the tool has finished."""
    html: str
    response_text: str

    def meta(self) -> dict[str, Any]:
        """Metadata attached to every tool, resource and result of this widget."""
        return {
            "openai/outputTemplate": self.template_uri,
            "openai/toolInvocation/invoking": self.invoking,
            "openai/toolInvocation/invoked": self.invoked,
            "openai/widgetAccessible": True,
            "openai/resultCanProduceWidget": True,
        }


def _widget_html(root_id: str, asset_name: str) -> str:
    return (
        f'<div id="{root_id}"></div>\n'
        f'<link rel="stylesheet" href="{ASSETS_BASE_URL}/{asset_name}-{ASSETS_VERSION}.css">\n'
        f'<script type="module" src="{ASSETS_BASE_URL}/{asset_name}-{ASSETS_VERSION}.js"></script>'
    )


DEFAULT_WIDGETS: tuple[WidgetDescriptor, ...] = (
    WidgetDescriptor(
        id="pizza-map",
        title="Show Pizza Map",
        template_uri="ui://widget/pizza-map.html",
        invoking="Hand-tossing a map",
        invoked="Served a fresh map",
        html=_widget_html("pizzaz-root", "pizzaz"),
        response_text="Rendered a pizza map!",
    ),
    WidgetDescriptor(
        id="pizza-carousel",
        title="Show Pizza Carousel",
        template_uri="ui://widget/pizza-carousel.html",
        invoking="Carousel some spots",
        invoked="Served a fresh carousel",
        html=_widget_html("pizzaz-carousel-root", "pizzaz-carousel"),
        response_text="Rendered a pizza carousel!",
    ),
    WidgetDescriptor(
        id="pizza-albums",
        title="Show Pizza Album",
        template_uri="ui://widget/pizza-albums.html",
        invoking="Hand-tossing an album",
        invoked="Served a fresh album",
        html=_widget_html("pizzaz-albums-root", "pizzaz-albums"),
        response_text="Rendered a pizza album!",
    ),
    WidgetDescriptor(
        id="pizza-list",
        title="Show Pizza List",
        template_uri="ui://widget/pizza-list.html",
        invoking="Hand-tossing a list",
        invoked="Served a fresh list",
        html=_widget_html("pizzaz-list-root", "pizzaz-list"),
        response_text="Rendered a pizza list!",
    ),
    WidgetDescriptor(
        id="pizza-video",
        title="Show Pizza Video",
        template_uri="ui://widget/pizza-video.html",
        invoking="Hand-tossing a video",
        invoked="Served a fresh video",
        html=_widget_html("pizzaz-video-root", "pizzaz-video"),
        response_text="Rendered a pizza video!",
    ),
)


class WidgetCatalog:
    """Immutable lookup table of widgets, indexed by id and by template URI."""

    def __init__(self, widgets: Iterable[WidgetDescriptor] = DEFAULT_WIDGETS):
        self._widgets: tuple[WidgetDescriptor, ...] = tuple(widgets)
        self._by_id: dict[str, WidgetDescriptor] = {}
        self._by_uri: dict[str, WidgetDescriptor] = {}

        for widget in self._widgets:
            if widget.id in self._by_id:
                raise ValueError(f"Duplicate widget id: {widget.id}")
            if widget.template_uri in self._by_uri:
                raise ValueError(f"Duplicate widget template URI: {widget.template_uri}")
            self._by_id[widget.id] = widget
            self._by_uri[widget.template_uri] = widget

    def get_by_id(self, widget_id: str) -> WidgetDescriptor | None:
        return self._by_id.get(widget_id)

    def get_by_uri(self, uri: str) -> WidgetDescriptor | None:
        return self._by_uri.get(uri)

    def __iter__(self) -> Iterator[WidgetDescriptor]:
        return iter(self._widgets)

    def __len__(self) -> int:
        return len(self._widgets)
