"""Tests for content bootstrap and directory listings."""

from __future__ import annotations

from subserve.content import (
    WELCOME_PAGE,
    ensure_content_directories,
    entry_href,
    render_directory_listing,
)


class TestEnsureContentDirectories:
    """Tests for first-run bootstrap."""

    def test_creates_root_and_default_site(self, tmp_path):
        """An absent root is created with .gitkeep and a seeded default site."""
        root = tmp_path / "content"

        created = ensure_content_directories(root, "www")

        assert created is True
        assert (root / ".gitkeep").read_text() == ""
        assert (root / "www" / "index.html").read_text() == WELCOME_PAGE
        assert WELCOME_PAGE == "<h1>Welcome to the default subdomain!</h1>"

    def test_creates_nested_root(self, tmp_path):
        root = tmp_path / "a" / "b" / "content"

        assert ensure_content_directories(root) is True
        assert (root / "www").is_dir()

    def test_idempotent(self, tmp_path):
        """A second call neither fails nor overwrites edited content."""
        root = tmp_path / "content"
        ensure_content_directories(root)
        (root / "www" / "index.html").write_text("<h1>Edited</h1>")

        created = ensure_content_directories(root)

        assert created is False
        assert (root / "www" / "index.html").read_text() == "<h1>Edited</h1>"

    def test_existing_root_is_left_alone(self, tmp_path):
        """The default site is not recreated when only it is missing."""
        root = tmp_path / "content"
        root.mkdir()

        assert ensure_content_directories(root) is False
        assert not (root / "www").exists()
        assert not (root / ".gitkeep").exists()


class TestDirectoryListing:
    """Tests for the listing renderer."""

    def test_one_link_per_entry(self):
        html = render_directory_listing("/docs", ["a.txt", "b", "c.html"])

        assert html.count("<li>") == 3
        assert '<a href="/docs/a.txt">a.txt</a>' in html
        assert '<a href="/docs/b">b</a>' in html
        assert "<title>Directory: /docs</title>" in html
        assert "<h1>Directory: /docs</h1>" in html

    def test_root_links_have_single_slash(self):
        html = render_directory_listing("/", ["style.css"])

        assert '<a href="/style.css">style.css</a>' in html
        assert "//style.css" not in html

    def test_trailing_slash_not_doubled(self):
        assert entry_href("/docs/", "a.txt") == "/docs/a.txt"

    def test_empty_directory(self):
        html = render_directory_listing("/empty", [])

        assert "<ul></ul>" in html
        assert "<li>" not in html

    def test_names_are_escaped(self):
        html = render_directory_listing("/", ["<b>.txt", "a b.txt"])

        assert "&lt;b&gt;.txt</a>" in html
        assert 'href="/a%20b.txt"' in html
        assert "<b>.txt" not in html
