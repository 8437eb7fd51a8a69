from pathlib import Path

import pytest

from app.models.schemas import WatchSource
from app.utils.config import Settings, load_watch_sources
from app.utils.errors import ConfigError


def write(path: Path, text: str) -> Path:
    path.write_text(text)
    return path


def test_missing_file_yields_no_sources(tmp_path):
    assert load_watch_sources(tmp_path / "absent.yaml") == []


def test_sources_key_with_normalised_fields(tmp_path):
    config = write(tmp_path / "sources.yaml", """
sources:
  - id: notes
    path: notes
    extensions: [MD, .Txt]
    lens: philosopher
  - id: flat
    path: /srv/inbox
    recursive: false
""")

    notes, flat = load_watch_sources(config)

    assert notes.path == (tmp_path / "notes").resolve()
    assert notes.extensions == frozenset({".md", ".txt"})
    assert notes.lens == "philosopher"
    assert notes.recursive is True
    assert flat.path == Path("/srv/inbox")
    assert flat.recursive is False
    assert flat.extensions == frozenset()
    assert flat.lens == "general"


def test_bare_list_is_accepted(tmp_path):
    config = write(tmp_path / "sources.yaml", "- {id: a, path: /tmp}\n")

    assert [source.id for source in load_watch_sources(config)] == ["a"]


@pytest.mark.parametrize(
    "text, message",
    [
        ("sources:\n  - {id: a, path: /tmp}\n  - {path: /tmp}\n", r"sources\[1\]"),
        ("sources:\n  - {id: a, path: /tmp}\n  - {id: a, path: /var}\n", "not unique"),
        ("sources: {id: a}\n", "must be a list"),
        ("sources:\n  - just-a-string\n", "must be a mapping"),
        ("sources: [unclosed\n", "Failed to parse"),
    ],
)
def test_invalid_files_raise_config_error(tmp_path, text, message):
    config = write(tmp_path / "sources.yaml", text)

    with pytest.raises(ConfigError, match=message):
        load_watch_sources(config)


def test_file_sources_come_before_environment_sources(tmp_path):
    config = write(tmp_path / "sources.yaml", "sources:\n  - {id: notes, path: /data/notes}\n")
    settings = Settings(
        _env_file=None,
        sources_file=config,
        watch_sources=[
            WatchSource(id="notes", path="/elsewhere"),
            WatchSource(id="inbox", path="/data/inbox"),
        ],
    )

    sources = settings.get_watch_sources()

    assert [(source.id, str(source.path)) for source in sources] == [
        ("notes", "/data/notes"),
        ("inbox", "/data/inbox"),
    ]


def test_derived_paths_and_patterns(tmp_path):
    settings = Settings(_env_file=None, data_dir=tmp_path, redact_patterns=" a+ , ,b+ ")

    assert settings.get_fingerprint_db_path() == tmp_path / "fingerprints.db"
    assert settings.get_redact_patterns() == ["a+", "b+"]
    assert Settings(_env_file=None, fingerprint_db=tmp_path / "x.db").get_fingerprint_db_path() == tmp_path / "x.db"
