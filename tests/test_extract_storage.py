import pytest

from app import storage
from app.extract import MAX_CONTENT_LENGTH, extract_text


class TestExtractText:
    def test_plain_text_is_decoded(self):
        assert extract_text("Café licence".encode("utf-8"), "text/plain", "a.txt") == "Café licence"

    def test_invalid_utf8_is_replaced(self):
        text = extract_text(b"abc\xff", "application/octet-stream", "blob.bin")
        assert text == "abc�"

    def test_html_is_reduced_to_visible_text(self):
        html = b"""
        <html><head><style>p {color: red}</style><script>var x = 1;</script></head>
        <body><nav>Home | About</nav><p>All rights reserved.</p><footer>footer</footer></body></html>
        """
        text = extract_text(html, "text/html; charset=utf-8", "page")

        assert "All rights reserved." in text
        assert "var x" not in text
        assert "Home | About" not in text
        assert "footer" not in text

    def test_html_detected_by_extension(self):
        text = extract_text(b"<p>Hello</p><script>bad()</script>", None, "Article.HTML")
        assert text == "Hello"

    def test_truncated(self):
        text = extract_text(b"a" * (MAX_CONTENT_LENGTH + 10), "text/plain", "big.txt")
        assert len(text) == MAX_CONTENT_LENGTH


class TestStorage:
    @pytest.fixture(autouse=True)
    def _tmp_root(self, tmp_path, monkeypatch):
        monkeypatch.setattr(storage, "UPLOAD_DIR", tmp_path / "blobs")

    @pytest.mark.asyncio
    async def test_put_get_delete(self):
        await storage.put_object("abc-file.txt", b"payload")

        assert await storage.get_object("abc-file.txt") == b"payload"
        assert await storage.delete_object("abc-file.txt") is True
        assert await storage.get_object("abc-file.txt") is None

    @pytest.mark.asyncio
    async def test_delete_missing_key(self):
        assert await storage.delete_object("missing.txt") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "../escape.txt", "nested/dir.txt", ".."])
    async def test_rejects_keys_outside_root(self, key):
        with pytest.raises(storage.StorageError):
            await storage.put_object(key, b"x")
