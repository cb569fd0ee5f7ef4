"""Dependency injection container assembly utilities."""

from genui_assistant.dependency_injection.container import build_container, get_container

__all__ = ["build_container", "get_container"]
