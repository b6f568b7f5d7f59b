"""Host window to location resolution."""

from __future__ import annotations

from os_controller.base_controller import OracleTimeout
from os_controller.path_resolver import (
    WindowPathResolver,
    WindowRef,
    document_to_path,
    is_placeholder_path,
)


def test_document_url_is_decoded() -> None:
    assert document_to_path("file:///Users/me/My%20Docs/") == "/Users/me/My Docs/"
    assert document_to_path("/Users/me/plain") == "/Users/me/plain"
    assert document_to_path("https://example.com/x") is None
    assert document_to_path(None) is None


def test_resolver_prefers_document_then_title_then_placeholder() -> None:
    lookups: list[tuple[str, float]] = []

    def lookup(title: str, timeout: float) -> str | None:
        lookups.append((title, timeout))
        return {"Projects": "/Users/me/Projects"}.get(title)

    resolver = WindowPathResolver(lookup, timeout=3.0)
    paths = resolver.resolve(
        [
            WindowRef(title="Docs", document="file:///Users/me/Docs"),
            WindowRef(title="Projects"),
            WindowRef(title="Recents"),
        ]
    )

    assert paths == ["/Users/me/Docs", "/Users/me/Projects", "/PseudoPath/Recents"]
    assert lookups == [("Projects", 3.0), ("Recents", 3.0)]
    assert is_placeholder_path(paths[2])
    assert not is_placeholder_path(paths[1])


def test_untitled_and_non_window_elements_are_skipped() -> None:
    resolver = WindowPathResolver(lambda title, timeout: "/should/not/be/used")
    paths = resolver.resolve(
        [
            WindowRef(title=None),
            WindowRef(title=""),
            WindowRef(title="Sheet", role="AXSheet"),
        ]
    )
    assert paths == []


def test_lookup_timeout_falls_back_to_placeholder() -> None:
    def lookup(title: str, timeout: float) -> str | None:
        raise OracleTimeout("no answer in 3s")

    assert WindowPathResolver(lookup).resolve([WindowRef(title="Shared")]) == ["/PseudoPath/Shared"]
