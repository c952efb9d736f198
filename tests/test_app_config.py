from __future__ import annotations

import app_config


def test_parse_env_line():
    assert app_config.parse_env_line("KEY=value") == ("KEY", "value")
    assert app_config.parse_env_line("  export TOKEN = 'a=b' ") == ("TOKEN", "a=b")
    assert app_config.parse_env_line('NAME="GLUG Reminders"') == ("NAME", "GLUG Reminders")
    assert app_config.parse_env_line("# DATABASE_URL=x") is None
    assert app_config.parse_env_line("") is None
    assert app_config.parse_env_line("no equals sign") is None
    assert app_config.parse_env_line("=orphan") is None


def test_load_env_file_keeps_existing_values(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("GLUG_TEST_NEW=from-file\nGLUG_TEST_SET=from-file\n# comment\n", encoding="utf-8")
    monkeypatch.delenv("GLUG_TEST_NEW", raising=False)
    monkeypatch.setenv("GLUG_TEST_SET", "from-env")

    applied = app_config.load_env_file(str(env_file))

    assert applied == 1
    assert app_config.os.environ["GLUG_TEST_NEW"] == "from-file"
    assert app_config.os.environ["GLUG_TEST_SET"] == "from-env"


def test_load_env_file_missing_is_noop(tmp_path):
    assert app_config.load_env_file(str(tmp_path / "absent.env")) == 0


def test_dev_user_only_without_auth(monkeypatch):
    monkeypatch.setattr(app_config, "DEV_USER_ID", "dev-1")
    assert app_config.dev_user_id() == "dev-1"
    assert not app_config.auth_configured()

    monkeypatch.setattr(app_config, "SUPABASE_URL", "https://auth.example.test")
    monkeypatch.setattr(app_config, "SUPABASE_ANON_KEY", "anon-key")
    assert app_config.auth_configured()
    assert not app_config.admin_configured()
    assert app_config.dev_user_id() == ""
