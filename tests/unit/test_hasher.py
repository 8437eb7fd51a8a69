import hashlib
import os

import pytest

from domains.file_ingest.processors.hasher import CHUNK_SIZE, hash_content, quick_signature


def test_hash_depends_on_content_only(tmp_path):
    first = tmp_path / "first.txt"
    second = tmp_path / "second.md"
    first.write_bytes(b"hello")
    second.write_bytes(b"hello")
    os.utime(second, (1000000000, 1000000000))

    assert hash_content(first) == hash_content(second) == hashlib.sha256(b"hello").hexdigest()


def test_hash_streams_large_files(tmp_path):
    payload = os.urandom(CHUNK_SIZE * 3 + 17)
    path = tmp_path / "blob.bin"
    path.write_bytes(payload)

    assert hash_content(path) == hashlib.sha256(payload).hexdigest()


def test_quick_signature_combines_hash_and_metadata(tmp_path):
    path = tmp_path / "a.md"
    path.write_text("hello")
    os.utime(path, (1700000000, 1700000000))

    signature = quick_signature(path)

    assert signature.path == str(path)
    assert signature.hash == hashlib.sha256(b"hello").hexdigest()
    assert len(signature.hash) == 64
    assert signature.size == 5
    assert signature.mtime == 1700000000


def test_unreadable_file_raises_os_error(tmp_path):
    with pytest.raises(OSError):
        hash_content(tmp_path / "missing.txt")
    with pytest.raises(OSError):
        quick_signature(tmp_path / "missing.txt")
