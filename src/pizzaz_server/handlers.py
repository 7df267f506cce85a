"""Per-session MCP handlers.

Tool and resource listings are derived from the catalog once, when the
:class:`ServerFactory` is built. Each call to the factory returns a brand new
low-level :class:`~mcp.server.lowlevel.Server` so that no protocol state is
ever shared between two SSE sessions.

Lookup misses and invalid arguments are returned from the dispatch functions as
:class:`HandlerError` values. The request handlers registered on the server turn
them into JSON-RPC errors, which keeps the failure scoped to the request and
leaves the session usable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pizzaz_server import answers
from pizzaz_server.catalog import MIME_TYPE, WidgetCatalog, WidgetDescriptor

logger = logging.getLogger(__name__)

SERVER_NAME = "pizzaz-python"
SERVER_VERSION = "0.1.0"

RESOURCE_NOT_FOUND = -32002

WIDGET_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "pizzaTopping": {
            "type": "string",
            "description": "Topping to mention when rendering the widget.",
        }
    },
    "required": ["pizzaTopping"],
    "additionalProperties": False,
}


class WidgetArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pizza_topping: str = Field(alias="pizzaTopping")


class ErrorKind(str, Enum):
    UNKNOWN_TOOL = "unknown_tool"
    UNKNOWN_RESOURCE = "unknown_resource"
    INVALID_ARGUMENTS = "invalid_arguments"


_ERROR_CODES: dict[ErrorKind, int] = {
    ErrorKind.UNKNOWN_TOOL: types.INVALID_PARAMS,
    ErrorKind.UNKNOWN_RESOURCE: RESOURCE_NOT_FOUND,
    ErrorKind.INVALID_ARGUMENTS: types.INVALID_PARAMS,
}


@dataclass(frozen=True)
class HandlerError:
    """A request-level failure produced by a dispatch function."""

    kind: ErrorKind
    message: str

    def to_error_data(self) -> types.ErrorData:
        return types.ErrorData(code=_ERROR_CODES[self.kind], message=self.message)


def _validation_message(prefix: str, error: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(loc) for loc in e['loc']) or '<root>'}: {e['msg']}" for e in error.errors()
    )
    return f"{prefix}: {details}"


def widget_tool(widget: WidgetDescriptor) -> types.Tool:
    return types.Tool(
        name=widget.id,
        title=widget.title,
        description=widget.title,
        inputSchema=WIDGET_INPUT_SCHEMA,
        _meta=widget.meta(),
    )


def widget_resource(widget: WidgetDescriptor) -> types.Resource:
    return types.Resource(
        uri=widget.template_uri,  # type: ignore[arg-type]
        name=widget.title,
        title=widget.title,
        description=f"{widget.title} widget markup",
        mimeType=MIME_TYPE,
        _meta=widget.meta(),
    )


def widget_resource_template(widget: WidgetDescriptor) -> types.ResourceTemplate:
    return types.ResourceTemplate(
        uriTemplate=widget.template_uri,
        name=widget.title,
        title=widget.title,
        description=f"{widget.title} widget markup",
        mimeType=MIME_TYPE,
        _meta=widget.meta(),
    )


def read_resource(catalog: WidgetCatalog, uri: str) -> types.ReadResourceResult | HandlerError:
    widget = catalog.get_by_uri(uri)
    if widget is None:
        return HandlerError(ErrorKind.UNKNOWN_RESOURCE, f"Unknown resource: {uri}")

    return types.ReadResourceResult(
        contents=[
            types.TextResourceContents(
                uri=widget.template_uri,  # type: ignore[arg-type]
                mimeType=MIME_TYPE,
                text=widget.html,
                _meta=widget.meta(),
            )
        ]
    )


def call_tool(
    catalog: WidgetCatalog, name: str, arguments: dict[str, Any] | None
) -> types.CallToolResult | HandlerError:
    """Dispatch a tool call by name.

    The Q&A tool is checked first, then the widget tools. Anything else is an
    unknown tool.
    """
    arguments = arguments or {}

    if name == answers.TOOL_NAME:
        try:
            question_args = answers.QuestionArguments.model_validate(arguments)
        except ValidationError as e:
            message = _validation_message(f"Invalid arguments for {name}", e)
            return HandlerError(ErrorKind.INVALID_ARGUMENTS, message)
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=answers.render_answer(question_args.question))],
        )

    widget = catalog.get_by_id(name)
    if widget is None:
        return HandlerError(ErrorKind.UNKNOWN_TOOL, f"Unknown tool: {name}")

    try:
        widget_args = WidgetArguments.model_validate(arguments)
    except ValidationError as e:
        message = _validation_message(f"Invalid arguments for {name}", e)
        return HandlerError(ErrorKind.INVALID_ARGUMENTS, message)

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=widget.response_text)],
        structuredContent={"pizzaTopping": widget_args.pizza_topping},
        _meta=widget.meta(),
    )


def _unwrap(result: Any) -> Any:
    if isinstance(result, HandlerError):
        logger.debug("Request failed (%s): %s", result.kind.value, result.message)
        raise McpError(result.to_error_data())
    return result


class ServerFactory:
    """Builds one isolated MCP server per SSE session.

    The listings are immutable and computed here, once. The closures registered
    on each server only read them, so sessions share no mutable state.
    """

    def __init__(self, catalog: WidgetCatalog):
        self.catalog = catalog
        self.tools: tuple[types.Tool, ...] = (*(widget_tool(w) for w in catalog), answers.tool())
        self.resources: tuple[types.Resource, ...] = tuple(widget_resource(w) for w in catalog)
        self.resource_templates: tuple[types.ResourceTemplate, ...] = tuple(
            widget_resource_template(w) for w in catalog
        )

    def __call__(self) -> Server[Any, Any]:
        catalog = self.catalog
        server: Server[Any, Any] = Server(SERVER_NAME, version=SERVER_VERSION)

        @server.list_tools()
        async def handle_list_tools() -> list[types.Tool]:
            return list(self.tools)

        @server.list_resources()
        async def handle_list_resources() -> list[types.Resource]:
            return list(self.resources)

        @server.list_resource_templates()
        async def handle_list_resource_templates() -> list[types.ResourceTemplate]:
            return list(self.resource_templates)

        # Registered directly so that the results keep their widget metadata.
        async def handle_read_resource(req: types.ReadResourceRequest) -> types.ServerResult:
            return types.ServerResult(_unwrap(read_resource(catalog, str(req.params.uri))))

        async def handle_call_tool(req: types.CallToolRequest) -> types.ServerResult:
            return types.ServerResult(_unwrap(call_tool(catalog, req.params.name, req.params.arguments)))

        server.request_handlers[types.ReadResourceRequest] = handle_read_resource
        server.request_handlers[types.CallToolRequest] = handle_call_tool

        return server
