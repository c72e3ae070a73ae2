import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.services.content_addressing import content_hash, is_content_hash


def test_content_hash_empty():
    """Test the hash of empty content is the well-known SHA-256 value."""
    expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert content_hash(b"") == expected


def test_content_hash_is_deterministic():
    content = os.urandom(4096)

    first = content_hash(content)
    assert first == content_hash(content)
    assert len(first) == 64
    assert first == first.lower()


def test_content_hash_differs_for_different_content():
    assert content_hash(b"hello") != content_hash(b"hello ")


def test_is_content_hash():
    assert is_content_hash(content_hash(b"anything"))
    assert not is_content_hash("")
    assert not is_content_hash("a" * 63)
    assert not is_content_hash("a" * 65)
    assert not is_content_hash("A" * 64)
    assert not is_content_hash("g" * 64)
    assert not is_content_hash("../" + "a" * 61)
