from pizzaz_server.app import create_app
from pizzaz_server.catalog import WidgetCatalog, WidgetDescriptor
from pizzaz_server.handlers import ServerFactory
from pizzaz_server.sessions import Session, SessionRegistry
from pizzaz_server.settings import PizzazSettings

__all__ = [
    "PizzazSettings",
    "ServerFactory",
    "Session",
    "SessionRegistry",
    "WidgetCatalog",
    "WidgetDescriptor",
    "create_app",
]
