"""
Tests for environment configuration.
"""
import pytest

from warning_checker.config import Config, ConfigError, DEFAULT_MONITORED_REGIONS

REQUIRED = {
    "GMAIL_FROM": "checker@example.com",
    "GMAIL_APP_PASS": "app-pass",
    "EMAIL_TO": "operator@example.com",
}

OPTIONAL = [
    "EMAIL_BCC", "DATADIR", "DELETED_DIR", "DB_PATH", "HEARTBEAT_PATH", "SMTP_HOST", "SMTP_PORT",
    "LOG_LEVEL", "CHECK_INTERVAL_MINUTES", "RETENTION_DAYS", "MONITORED_REGIONS", "CITY_URLS",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env):
    config = Config.from_env()

    assert config.gmail_from == "checker@example.com"
    assert config.email_bcc is None
    assert config.data_dir == "data/xml"
    assert config.deleted_dir == "data/deleted"
    assert config.db_path == "data/weather.sqlite3"
    assert config.smtp_port == 587
    assert config.check_interval_minutes == 10
    assert config.retention_days == 30
    assert config.monitored_regions == DEFAULT_MONITORED_REGIONS
    assert config.city_urls == {}


def test_overrides(env):
    env.setenv("EMAIL_BCC", "archive@example.com")
    env.setenv("DATADIR", "/var/lib/checker/xml")
    env.setenv("CHECK_INTERVAL_MINUTES", "5")
    env.setenv("MONITORED_REGIONS", '{"東京管区気象台": ["千代田区"]}')
    env.setenv("CITY_URLS", '{"千代田区": "https://example.com/chiyoda"}')

    config = Config.from_env()

    assert config.email_bcc == "archive@example.com"
    assert config.data_dir == "/var/lib/checker/xml"
    assert config.check_interval_minutes == 5
    assert config.monitored_regions == {"東京管区気象台": ["千代田区"]}
    assert config.city_urls == {"千代田区": "https://example.com/chiyoda"}


@pytest.mark.parametrize("name", sorted(REQUIRED))
def test_missing_required(env, name):
    env.delenv(name)

    with pytest.raises(ConfigError, match=name):
        Config.from_env()


@pytest.mark.parametrize("name,value", [
    ("SMTP_PORT", "smtp"),
    ("MONITORED_REGIONS", "{not json"),
    ("MONITORED_REGIONS", '["裾野市"]'),
    ("MONITORED_REGIONS", '{"静岡地方気象台": "裾野市"}'),
    ("CITY_URLS", "[]"),
])
def test_malformed_values(env, name, value):
    env.setenv(name, value)

    with pytest.raises(ConfigError):
        Config.from_env()


def test_default_regions_not_shared(env):
    first = Config.from_env()
    first.monitored_regions["静岡地方気象台"].append("三島市")

    assert "三島市" not in Config.from_env().monitored_regions["静岡地方気象台"]


def test_dotenv_in_working_directory(env, tmp_path):
    for name in REQUIRED:
        env.delenv(name)
    (tmp_path / ".env").write_text(
        "GMAIL_FROM=dotenv@example.com\nGMAIL_APP_PASS=dotenv-pass\nEMAIL_TO=dotenv-operator@example.com\n"
    )

    config = Config.from_env()

    assert config.gmail_from == "dotenv@example.com"
    assert config.gmail_app_pass == "dotenv-pass"
    assert config.email_to == "dotenv-operator@example.com"


def test_process_environment_wins_over_dotenv(env, tmp_path):
    env.delenv("GMAIL_FROM")
    env.delenv("GMAIL_APP_PASS")
    (tmp_path / ".env").write_text(
        "GMAIL_FROM=dotenv@example.com\nGMAIL_APP_PASS=dotenv-pass\nEMAIL_TO=dotenv-operator@example.com\n"
    )

    config = Config.from_env()

    assert config.gmail_from == "dotenv@example.com"
    assert config.email_to == "operator@example.com"


def test_explicit_env_file(env, tmp_path):
    env.delenv("EMAIL_TO")
    env_file = tmp_path / "conf" / "checker.env"
    env_file.parent.mkdir()
    env_file.write_text("EMAIL_TO=explicit@example.com\n")

    assert Config.from_env(env_file=str(env_file)).email_to == "explicit@example.com"
