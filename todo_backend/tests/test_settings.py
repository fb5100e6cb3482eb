import pytest

from todo_api.settings import get_settings

ENV_VARS = [
    "PERSISTENCE_BACKEND",
    "SQLITE_DB_PATH",
    "CORS_ALLOW_ORIGINS",
    "JWT_SECRET",
    "JWT_ALGORITHM",
    "JWT_EXPIRES_MINUTES",
    "BCRYPT_ROUNDS",
    "ENABLE_SCHEDULER",
    "RECURRENCE_INTERVAL_MINUTES",
    "CLEANUP_HOUR_UTC",
    "LOG_LEVEL",
    "APP_ENV",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    s = get_settings()
    assert s.persistence_backend == "memory"
    assert s.sqlite_db_path == "./data/todos.db"
    assert s.cors_allow_origins == ["*"]
    assert s.jwt_algorithm == "HS256"
    assert s.jwt_expires_minutes == 60
    assert s.bcrypt_rounds == 12
    assert s.enable_scheduler is True
    assert s.recurrence_interval_minutes == 60
    assert s.cleanup_hour_utc == 0
    assert s.log_level == "INFO"
    assert not s.is_development


def test_values_from_env(clean_env):
    clean_env.setenv("PERSISTENCE_BACKEND", "SQLite")
    clean_env.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test,")
    clean_env.setenv("ENABLE_SCHEDULER", "off")
    clean_env.setenv("RECURRENCE_INTERVAL_MINUTES", "15")
    clean_env.setenv("CLEANUP_HOUR_UTC", "3")
    clean_env.setenv("APP_ENV", "Development")

    s = get_settings()
    assert s.persistence_backend == "sqlite"
    assert s.cors_allow_origins == ["http://a.test", "http://b.test"]
    assert s.enable_scheduler is False
    assert s.recurrence_interval_minutes == 15
    assert s.cleanup_hour_utc == 3
    assert s.is_development


@pytest.mark.parametrize(
    "name,value,attr,expected",
    [
        ("PERSISTENCE_BACKEND", "postgres", "persistence_backend", "memory"),
        ("CLEANUP_HOUR_UTC", "24", "cleanup_hour_utc", 0),
        ("BCRYPT_ROUNDS", "2", "bcrypt_rounds", 12),
        ("RECURRENCE_INTERVAL_MINUTES", "soon", "recurrence_interval_minutes", 60),
        ("JWT_EXPIRES_MINUTES", "0", "jwt_expires_minutes", 60),
    ],
)
def test_invalid_values_fall_back_to_defaults(clean_env, name, value, attr, expected):
    clean_env.setenv(name, value)
    assert getattr(get_settings(), attr) == expected
