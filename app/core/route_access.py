from typing import Iterable, Set, Tuple
from fastapi import APIRouter


class RouteAccessTable:
    """
    Central table of routes that bypass authentication.

    Routes are registered explicitly by (method, path) when routers are
    included; anything not listed here requires a valid access token.
    """

    def __init__(self):
        self._public: Set[Tuple[str, str]] = set()
        self._public_prefixes: Set[str] = set()

    def mark_public(self, path: str, methods: Iterable[str] = ("GET",)) -> None:
        for method in methods:
            self._public.add((method.upper(), path))

    def mark_public_prefix(self, prefix: str) -> None:
        """Public by prefix, for framework routes such as the API docs"""
        self._public_prefixes.add(prefix)

    def mark_router_public(self, router: APIRouter, prefix: str, names: Iterable[str]) -> None:
        """Mark the named endpoints of a router as public, under the mount prefix"""
        wanted = set(names)
        for route in router.routes:
            if getattr(route, "name", None) in wanted:
                self.mark_public(f"{prefix}{route.path}", getattr(route, "methods", None) or ("GET",))

    def is_public(self, method: str, path: str) -> bool:
        if (method.upper(), path) in self._public:
            return True
        return any(path.startswith(prefix) for prefix in self._public_prefixes)
