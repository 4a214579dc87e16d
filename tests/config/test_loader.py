from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from leadscrape.config import ClientMode, ConfigLocator, ConfigRepository, GlobalConfig, SourceConfig
from leadscrape.config.loader import _slugify, resolve_credential
from leadscrape.errors import ConfigurationError


def test_config_locator_uses_env_and_creates_directories(tmp_path: Path) -> None:
    locator = ConfigLocator()
    assert locator.project_root == tmp_path.resolve()
    for path in (locator.data_dir, locator.sources_dir, locator.logs_dir):
        assert path.exists()
    assert locator.global_config_path() == tmp_path.resolve() / "data" / "settings.yaml"
    assert locator.resolve(Path("data/leads.db")) == tmp_path.resolve() / "data" / "leads.db"


def test_first_load_writes_default_settings(temp_config_repository: ConfigRepository) -> None:
    config = temp_config_repository.load_global_config()
    path = temp_config_repository.locator.global_config_path()
    assert path.exists()
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert payload["max_concurrent_sources"] == 1
    assert "sources" not in payload
    assert set(config.sources) == {"Yelp", "Google Maps"}


def test_config_repository_global_roundtrip(tmp_path: Path) -> None:
    locator = ConfigLocator(project_root=tmp_path)
    ConfigRepository(locator).save_global_config(
        GlobalConfig(enable_progress_bar=False, max_concurrent_sources=3)
    )
    loaded = ConfigRepository(locator).load_global_config()
    assert loaded.enable_progress_bar is False
    assert loaded.max_concurrent_sources == 3
    assert loaded.get_source("yelp").page_size == 50


def test_source_files_merge_into_global_config(temp_config_repository: ConfigRepository) -> None:
    source = SourceConfig(
        name="Angi",
        mode=ClientMode.SCRAPING,
        directory={
            "search_url": "https://angi.example/search?q={term}&loc={location}&page={page}",
            "listing_selector": "div.pro",
            "fields": {"company_name": "h2 ::text", "phone": "a.tel ::attr:href"},
        },
    )
    path = temp_config_repository.save_source(source)
    assert path.name == "angi.yaml"

    loaded = temp_config_repository.source_config("angi")
    assert loaded.directory.fields["phone"] == "a.tel ::attr:href"
    assert {s.name for s in temp_config_repository.list_sources()} == {"Yelp", "Google Maps", "Angi"}


def test_config_repository_missing_source(temp_config_repository: ConfigRepository) -> None:
    with pytest.raises(ConfigurationError):
        temp_config_repository.source_config("missing")


def test_non_mapping_settings_are_rejected(tmp_path: Path) -> None:
    locator = ConfigLocator(project_root=tmp_path)
    locator.global_config_path().write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigRepository(locator).load_global_config()


def test_credentials_come_from_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("YELP_API_KEY=from-dotenv\n", encoding="utf-8")
    repository = ConfigRepository(ConfigLocator(project_root=tmp_path))
    yelp = repository.source_config("yelp")
    assert repository.resolve_credential(yelp) == "from-dotenv"
    monkeypatch.delenv("YELP_API_KEY")


def test_credential_resolution_order(monkeypatch: pytest.MonkeyPatch) -> None:
    source = SourceConfig(name="Yelp", api_key_env="YELP_API_KEY", api_key="inline")
    assert resolve_credential(source) == "inline"
    monkeypatch.setenv("YELP_API_KEY", "from-env")
    assert resolve_credential(source) == "from-env"

    missing = SourceConfig(name="Google Maps", api_key_env="GOOGLE_PLACES_API_KEY")
    with pytest.raises(ConfigurationError) as excinfo:
        resolve_credential(missing)
    assert excinfo.value.config_key == "GOOGLE_PLACES_API_KEY"
    assert excinfo.value.retryable is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Google Maps", "google-maps"),
        ("BBB", "bbb"),
        ("  Home Advisor! ", "home-advisor"),
    ],
)
def test_slugify(raw: str, expected: str) -> None:
    assert _slugify(raw) == expected
