import pytest

from campus_chat.core.config import Settings
from campus_chat.db.base import process_database_url


def test_domains_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("COLLEGE_EMAIL_DOMAINS", "rguktn.ac.in, @rgukts.ac.in")
    settings = Settings()
    assert settings.college_email_domains == ["rguktn.ac.in", "rgukts.ac.in"]


def test_domains_from_json_env(monkeypatch):
    monkeypatch.setenv("COLLEGE_EMAIL_DOMAINS", '["RGUKTN.AC.IN"]')
    assert Settings().college_email_domains == ["rguktn.ac.in"]


def test_defaults(monkeypatch):
    monkeypatch.delenv("COLLEGE_EMAIL_DOMAINS", raising=False)
    settings = Settings()
    assert settings.college_email_domains == ["rguktn.ac.in"]
    assert settings.match_candidate_limit == 10
    assert settings.recent_pair_window_hours == 24
    assert (settings.rating_min, settings.rating_max) == (1, 4)


@pytest.mark.parametrize("url, expected", [
    ("postgres://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ("postgresql://u:p@host/db", "postgresql+asyncpg://u:p@host/db"),
    ("sqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
    ("sqlite+aiosqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
])
def test_database_url_uses_async_driver(url, expected):
    assert process_database_url(url) == expected


def test_settings_read_dotenv_and_ignore_unknown_keys():
    assert Settings.model_config["env_file"] == ".env"
    assert Settings.model_config["extra"] == "ignore"
