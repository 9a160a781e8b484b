import pytest

from devourer.config import (
    DEFAULT_PROVIDERS_DIR,
    DevourerConfig,
    load_config,
    write_default_config,
)


def test_default_config_round_trips(tmp_path):
    path = write_default_config(tmp_path / "config.ini")
    config = load_config(path)
    assert config == DevourerConfig()
    assert config.metadata.providers_dir == DEFAULT_PROVIDERS_DIR


def test_custom_values(tmp_path):
    path = tmp_path / "config.ini"
    path.write_text(
        "[server]\n"
        "port = 9000\n"
        "[scanner]\n"
        "ignore_patterns = @eaDir, .Trash\n"
        "series_delay_seconds = 0\n"
        "[monitoring]\n"
        "enabled = no\n"
        "[metadata]\n"
        f"providers_dir = {tmp_path / 'providers'}\n"
        "google_books_api_key = abc\n"
    )

    config = load_config(path)

    assert config.server_port == 9000
    assert config.server_host == "0.0.0.0"
    assert config.scanner.ignore_patterns == ("@eaDir", ".Trash")
    assert config.scanner.series_delay_seconds == 0
    assert config.monitoring.enabled is False
    assert config.metadata.providers_dir == tmp_path / "providers"
    assert config.google_books_api_key == "abc"


def test_api_key_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("GOOGLE_BOOKS_API_KEY", "from-env")
    config = load_config(write_default_config(tmp_path / "config.ini"))
    assert config.google_books_api_key == "from-env"


def test_missing_config(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.ini")
