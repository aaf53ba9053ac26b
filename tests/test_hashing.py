"""Tests for :mod:`quillmark.analysis.hashing`."""

from __future__ import annotations

from quillmark.analysis.hashing import content_hash
from quillmark.analysis.models import AnalysisOptions


class TestContentHash:
    """Tests for the content hash shared by cache and scheduler."""

    def test_same_input_same_hash(self) -> None:
        """Hashing is deterministic."""
        options = AnalysisOptions()
        assert content_hash("Hello world.", options) == content_hash("Hello world.", options)

    def test_hash_is_sha256_hex(self) -> None:
        digest = content_hash("text")
        assert len(digest) == 64
        assert all(ch in "0123456789abcdef" for ch in digest)

    def test_different_text_different_hash(self) -> None:
        assert content_hash("one") != content_hash("two")

    def test_options_partition_the_key(self) -> None:
        """The same text analyzed with different options gets a different key."""
        text = "The students goes to school."
        assert content_hash(text, AnalysisOptions()) != content_hash(text, AnalysisOptions(style=False))

    def test_mapping_and_dataclass_options_agree(self) -> None:
        """Mapping order and representation do not affect the key."""
        text = "Same text"
        as_options = AnalysisOptions(grammar=True, style=False, readability=True, audience_level="beginner")
        as_mapping = {"audienceLevel": "beginner", "readability": True, "style": False, "grammar": True}
        assert content_hash(text, as_options) == content_hash(text, as_mapping)

    def test_none_options_match_defaults(self) -> None:
        assert content_hash("abc", None) == content_hash("abc", AnalysisOptions())

    def test_unicode_text(self) -> None:
        assert content_hash("naïve café") != content_hash("naive cafe")
