from fastapi import APIRouter, HTTPException
from typing import Callable
from core.base_database import BaseDatabase
from core.errors import (
    ConfigurationError,
    CrossValError,
    FetchError,
    InvalidStatusTransition,
    QuoteLockedError,
    RateBudgetExhausted,
    TokenError,
)

from core.logger import Logger
logger = Logger(__name__)

# most specific first
ERROR_STATUS_CODES = (
    (ConfigurationError, 404),
    (QuoteLockedError, 409),
    (InvalidStatusTransition, 409),
    (RateBudgetExhausted, 429),
    (TokenError, 401),
    (FetchError, 502),
    (CrossValError, 500),
)


def route(method: str, path: str, **kwargs):
    """Generic decorator to mark a method as a route handler."""
    def decorator(func: Callable):
        func._api_route = (method.lower(), path, kwargs)
        return func
    return decorator

def get(path: str, **kwargs): return route("get", path, **kwargs)
def post(path: str, **kwargs): return route("post", path, **kwargs)


def to_http_error(error: CrossValError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


class BaseAPI(BaseDatabase):
    """
    Base class for modular FastAPI route groups.
    Subclasses define routes with @get, @post, etc.
    """
    base_prefix: str = "/api"

    def __init__(self, prefix: str):
        self.router = APIRouter(prefix=f"{self.base_prefix}{prefix}")
        self._init_service()
        self._register_routes()

    def __init_subclass__(cls, **kwargs):
        """Remember the service class declared as ``service: SomeService``"""
        super().__init_subclass__(**kwargs)
        annotations = getattr(cls, "__annotations__", {})
        if "service" in annotations:
            cls.service_class = annotations["service"]

    def _init_service(self):
        if hasattr(self.__class__, "service_class"):
            self.service = self.__class__.service_class()

    def _register_routes(self):
        for attr_name in dir(self):
            method = getattr(self, attr_name)
            if callable(method) and hasattr(method, "_api_route"):
                http_method, path, options = method._api_route
                getattr(self.router, http_method)(path, **options)(method)
                logger.debug(f"Registered route: [{http_method.upper()}] {path} in {self.__class__.__name__}")
