import anyio
import pytest
import sse_starlette
from packaging import version

from pizzaz_server.catalog import WidgetCatalog
from pizzaz_server.handlers import ServerFactory


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global anyio.Event that gets bound to the
    event loop of the first test streaming a response. sse-starlette 3.0+ no
    longer keeps this module-level state.
    """
    if not NEEDS_RESET:
        yield
        return

    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]

    yield

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def catalog() -> WidgetCatalog:
    return WidgetCatalog()


@pytest.fixture
def server_factory(catalog: WidgetCatalog) -> ServerFactory:
    return ServerFactory(catalog)
