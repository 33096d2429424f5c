"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to a handler. Handlers write through the live
ResponseWriter of the request instead of returning a response, which is
what lets them push additional resources while they answer:

    router = Router()

    @router.get("/")
    def index(writer, request):
        writer.write("<html>...</html>")
        push_files(writer, ["/static/app.css"])

=============================================================================
PATH PATTERNS
=============================================================================

    /users          static segment, exact match
    /users/:id      one segment, captured as path_params["id"]
    /static/*path   everything remaining, captured as path_params["path"]

Routes are tried in registration order; the first match wins.

=============================================================================
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .request import HTTPRequest
from .response import ResponseWriter, method_not_allowed, not_found


logger = logging.getLogger(__name__)

Handler = Callable[[ResponseWriter, HTTPRequest], None]

ALL_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@dataclass
class Route:
    """A registered route: pattern, method filter and handler."""

    path: str
    method: Optional[str]            # None = any method
    handler: Handler
    name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)


@dataclass
class RouteMatch:
    """
    Result of a successful route match.

    Example:
        Pattern: /users/:id
        Path:    /users/123
        Result:  RouteMatch(route=<Route>, params={"id": "123"})
    """
    route: Route
    params: Dict[str, str]


class Router:
    """
    HTTP request router with dynamic path parameters and route groups.

        api = router.group("/api")

        @api.get("/users/:id")      # Matches /api/users/42
        def get_user(writer, request):
            writer.write_json({"id": request.path_params["id"]})
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix.rstrip("/")
        self._routes: List[Route] = []
        self._sub_routers: List[tuple[str, "Router"]] = []

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Route:
        """
        Register a route.

        Args:
            path: URL pattern (e.g., /users/:id)
            handler: handler(writer, request)
            method: HTTP method (None for any method)
            name: Optional route name
            **meta: Additional metadata (accessible via route.meta)
        """
        full_path = self.prefix + path
        pattern, param_names = self._compile_pattern(full_path)

        route = Route(
            path=full_path,
            method=method.upper() if method else None,
            handler=handler,
            name=name,
            meta=meta,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        logger.debug(f"Registered route {route.method or 'ANY'} {route.path}")
        return route

    def _compile_pattern(self, path: str) -> tuple[re.Pattern, List[str]]:
        """
        Compile a path pattern into an anchored regex.

            "/users/:id/files/*rest"
                → ^/users/(?P<id>[^/]+)/files/(?P<rest>.*)$
        """
        param_names: List[str] = []
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue

            regex_parts.append("/")

            if segment.startswith(":"):
                param_name = segment[1:]
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>[^/]+)")

            elif segment.startswith("*"):
                param_name = segment[1:] or "wildcard"
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>.*)")
                break  # wildcard consumes the rest

            else:
                regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")  # root route

        regex_parts.append("$")
        return re.compile("".join(regex_parts)), param_names

    # =========================================================================
    # ROUTE MATCHING
    # =========================================================================

    @staticmethod
    def _normalize(path: str) -> str:
        return "/" + path.strip("/") if path != "/" else "/"

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """Find the first route matching method and path."""
        path = self._normalize(path)

        for route in self._routes:
            if route.method and route.method != method.upper():
                continue

            if route._pattern:
                match = route._pattern.match(path)
                if match:
                    return RouteMatch(route=route, params=match.groupdict())

        for prefix, sub_router in self._sub_routers:
            if path.startswith(self.prefix + prefix):
                result = sub_router.match(method, path)
                if result:
                    return result

        return None

    def get_allowed_methods(self, path: str) -> List[str]:
        """Methods registered for path, for the Allow header of a 405."""
        path = self._normalize(path)
        methods = set()

        for route in self.routes():
            if route._pattern and route._pattern.match(path):
                if route.method is None:
                    return list(ALL_METHODS)
                methods.add(route.method)

        return sorted(methods)

    def handle(self, writer: ResponseWriter, request: HTTPRequest) -> None:
        """
        Dispatch a request to its handler.

        Unknown path → 404, known path with another method → 405.
        Handler exceptions propagate to the connection, which answers 500.
        """
        match = self.match(request.method, request.path)

        if match:
            request.path_params = match.params
            match.route.handler(writer, request)
            return

        allowed = self.get_allowed_methods(request.path)
        if allowed:
            method_not_allowed(writer, allowed)
            return

        not_found(writer, f"No route matches {request.path}")

    # =========================================================================
    # DECORATOR-STYLE ROUTE REGISTRATION
    # =========================================================================

    def route(
        self,
        path: str,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Callable[[Handler], Handler]:
        """
        Decorator for registering routes.

            @router.route("/users", method="GET")
            def list_users(writer, request):
                ...
        """
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name, **meta)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", name, **meta)

    def post(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "POST", name, **meta)

    def put(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "PUT", name, **meta)

    def delete(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "DELETE", name, **meta)

    def patch(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "PATCH", name, **meta)

    def head(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "HEAD", name, **meta)

    def options(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "OPTIONS", name, **meta)

    # =========================================================================
    # ROUTER COMPOSITION
    # =========================================================================

    def group(self, prefix: str) -> "Router":
        """Create a sub-router whose routes all start with prefix."""
        sub_router = Router(self.prefix + prefix)
        self._sub_routers.append((prefix, sub_router))
        return sub_router

    def routes(self) -> List[Route]:
        """All registered routes, sub-routers included."""
        all_routes = list(self._routes)
        for _, sub_router in self._sub_routers:
            all_routes.extend(sub_router.routes())
        return all_routes

    def log_routes(self) -> None:
        """Log the route table at DEBUG level."""
        for route in self.routes():
            logger.debug(f"  {route.method or 'ANY':8} {route.path}")
