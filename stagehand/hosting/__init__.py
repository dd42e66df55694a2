"""Hosting: host assembly, WSGI adapter and request dispatcher."""

from .builder import HostBuilder, Startup
from .dispatcher import Dispatcher
from .host import Host
from .web import create_wsgi_app

__all__ = ["HostBuilder", "Startup", "Host", "Dispatcher", "create_wsgi_app"]
