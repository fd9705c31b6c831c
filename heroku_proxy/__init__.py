"""
A minimal HTTP relay: ``/proxy?q=<url>`` forwards the request to ``<url>``.
"""

from .server import ProxyServer
from .handler import RequestHandler
from .proxy import ProxyHandler
from .models import ProxyRequest, PlainTextResponse
from .config import ServerConfig
from .errors import BadRequest, ConfigurationWarning, ServeFatal, ShutdownTimeout

__all__ = ['ProxyServer', 'RequestHandler', 'ProxyHandler', 'ProxyRequest',
           'PlainTextResponse', 'ServerConfig', 'BadRequest',
           'ConfigurationWarning', 'ServeFatal', 'ShutdownTimeout']
