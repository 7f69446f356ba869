"""Tests for content hashing, text normalization and filename sanitizing."""

from librarian.rag.hashing import hash_bytes, hash_text, normalize_text, sanitize_filename


class TestHashBytes:
    def test_known_digest(self):
        assert hash_bytes(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    def test_single_byte_difference_changes_hash(self):
        assert hash_bytes(b"report v1") != hash_bytes(b"report v2")


class TestNormalizeText:
    def test_unifies_line_endings(self):
        assert normalize_text("a\r\nb\rc") == "a\nb\nc"

    def test_strips_each_line(self):
        assert normalize_text("  first  \n\tsecond\t") == "first\nsecond"

    def test_collapses_blank_line_runs(self):
        assert normalize_text("one\n\n\n\n\ntwo") == "one\n\ntwo"

    def test_whitespace_only_lines_count_as_blank(self):
        assert normalize_text("one\n   \n \t \n\ntwo") == "one\n\ntwo"

    def test_keeps_single_blank_line(self):
        assert normalize_text("one\n\ntwo") == "one\n\ntwo"

    def test_trims_result(self):
        assert normalize_text("\n\n  body  \n\n") == "body"

    def test_idempotent(self):
        text = "  Title \r\n\r\n\r\n Body line\t\n\n\n\nEnd  "
        once = normalize_text(text)
        assert normalize_text(once) == once

    def test_empty(self):
        assert normalize_text("   \n\n ") == ""


class TestHashText:
    def test_equal_after_normalization(self):
        assert hash_text("Hello\r\n\r\n\r\nworld  ") == hash_text("Hello\n\nworld")

    def test_different_content(self):
        assert hash_text("Hello world") != hash_text("Hello, world")


class TestSanitizeFilename:
    def test_strips_directories(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("C:\\Users\\me\\notes.txt") == "notes.txt"

    def test_replaces_unsafe_characters_and_spaces(self):
        assert sanitize_filename('my "best" file?.pdf') == "my_best_file_.pdf"

    def test_keeps_unicode(self):
        assert sanitize_filename("Лекция 1.docx") == "Лекция_1.docx"

    def test_truncates_and_keeps_extension(self):
        name = sanitize_filename("a" * 300 + ".pdf")
        assert len(name) == 255
        assert name.endswith(".pdf")

    def test_empty_falls_back(self):
        assert sanitize_filename("") == "unknown"
        assert sanitize_filename("???") == "unknown"
