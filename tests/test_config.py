from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml

from website_monitor.config import (
    ConfigError,
    expand_env_vars,
    load_config,
    parse_config,
    resolve_config_path,
    validate_config,
)
from website_monitor.defaults import DEFAULT_CONFIG, json_template, yaml_template


def _base(**check: Any) -> dict[str, Any]:
    c: dict[str, Any] = {"id": "home", "name": "Homepage", "url": "https://example.com/"}
    c.update(check)
    return {"checks": [c]}


def _validate(data: dict[str, Any]) -> None:
    validate_config(parse_config(data))


def test_expand_env_vars() -> None:
    env = {"TOKEN": "s3cret", "HOST": "db"}
    assert expand_env_vars("Bearer ${TOKEN}", env) == "Bearer s3cret"
    assert expand_env_vars("${ HOST }:5432", env) == "db:5432"
    assert expand_env_vars("${MISSING}x", env) == "x"
    assert expand_env_vars(r"literal \${TOKEN}", env) == "literal ${TOKEN}"
    assert expand_env_vars("broken ${TOKEN", env) == "broken ${TOKEN"
    assert expand_env_vars("", env) == ""
    assert expand_env_vars(None, env) is None


def test_defaults_applied() -> None:
    cfg = parse_config(_base())
    check = cfg.checks[0]
    assert cfg.app.name == "WebsiteMonitor"
    assert cfg.sqlite.db_path == "./monitor.db"
    assert check.enabled is True
    assert check.severity == "Critical"
    assert check.method == "GET"
    assert check.timeout_seconds == 15
    assert (check.expected_status.min, check.expected_status.max) == (200, 299)
    assert check.effective_max_redirects == 5
    assert check.effective_max_body_bytes == 1_048_576
    assert cfg.notifications is None


def test_load_yaml_with_env_expansion(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "sqlite:",
                "  dbPath: ${DATA_DIR}/monitor.db",
                "checks:",
                "  - id: home",
                "    name: Homepage",
                "    url: https://${SITE}/",
                "    login:",
                "      loginUrl: https://${SITE}/login",
                "      username: ${USER_NAME}",
                "      password: ${USER_PASS}",
                "notifications:",
                "  enabledChannels: [sms]",
                "  sms:",
                "    endpoint: https://gw.example.com/send",
                "    headers:",
                "      Authorization: Bearer ${SMS_TOKEN}",
            ]
        ),
        encoding="utf-8",
    )
    env = {"DATA_DIR": "/var/lib/mon", "SITE": "example.org", "USER_NAME": "alice", "USER_PASS": "pw", "SMS_TOKEN": "t"}
    cfg = load_config(path, environ=env)

    assert cfg.sqlite.db_path == "/var/lib/mon/monitor.db"
    check = cfg.checks[0]
    assert check.url == "https://example.org/"
    assert check.login is not None
    assert check.login.login_url == "https://example.org/login"
    assert check.login.username == "alice"
    assert check.login.password == "pw"
    assert cfg.notifications is not None
    assert cfg.notifications.sms is not None
    assert cfg.notifications.sms.headers == {"Authorization": "Bearer t"}


def test_load_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_base(severity="warning", method="head")), encoding="utf-8")
    cfg = load_config(path, environ={})
    assert cfg.checks[0].severity == "warning"


def test_load_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config not found"):
        load_config(tmp_path / "missing.yaml")

    bad_ext = tmp_path / "config.toml"
    bad_ext.write_text("x = 1", encoding="utf-8")
    with pytest.raises(ConfigError, match="Unsupported config extension"):
        load_config(bad_ext)

    bad_json = tmp_path / "config.json"
    bad_json.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid JSON config"):
        load_config(bad_json)

    bad_yaml = tmp_path / "config.yaml"
    bad_yaml.write_text("checks: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid YAML config"):
        load_config(bad_yaml)

    wrong_type = tmp_path / "typed.yaml"
    wrong_type.write_text("checks:\n  - id: a\n    name: b\n    url: https://x/\n    timeoutSeconds: soon\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Config invalid for schema"):
        load_config(wrong_type)


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ({"checks": []}, "at least one check"),
        (_base(id=""), "Each check must have an id"),
        ({"checks": [{"id": "a", "name": "A", "url": "https://x/"}, {"id": "A", "name": "B", "url": "https://y/"}]}, "Duplicate check id"),
        (_base(name=" "), "must have a name"),
        (_base(url="/relative"), "not a valid absolute URI"),
        (_base(timeoutSeconds=0), "timeoutSeconds must be 1..300"),
        (_base(timeoutSeconds=301), "timeoutSeconds must be 1..300"),
        (_base(severity="Fatal"), "severity must be Info|Warning|Critical"),
        (_base(method="DELETE"), "method must be GET|POST|HEAD"),
        (_base(latencyMode="Panic"), "latencyMode must be Ignore|Warn|Fail"),
        (_base(expectedStatus={"min": 300, "max": 200}), "expectedStatus"),
        (_base(expectedStatus={"min": 99, "max": 200}), "expectedStatus"),
        (_base(redirects={"maxRedirects": -1}), "maxRedirects must be >= 0"),
        (_base(contentRule={"type": "contains", "value": ""}), "contentRule.value is required"),
        (_base(contentRule={"type": "xpath", "value": "//h1"}), "contentRule.type must be contains|regex"),
        (_base(login={"loginUrl": ""}), "login.loginUrl is required"),
        (_base(login={"loginUrl": "login"}), "login.loginUrl is invalid"),
        (_base(login={"loginUrl": "https://x/login", "usernameField": ""}), "login.usernameField is required"),
        (
            _base(login={"loginUrl": "https://x/login", "successIndicator": {"type": "regex", "value": " "}}),
            "login.successIndicator.value is required",
        ),
        (_base(headers=[{"name": "", "contains": "x"}]), "headers[] requires name"),
        (_base(contentLength={"minBytes": -1}), "minBytes must be >= 0"),
        (_base(contentLength={"minBytes": 10, "maxBytes": 5}), "minBytes > maxBytes"),
        (_base(maxBodyBytes=100), "maxBodyBytes should be between"),
        ({**_base(), "sqlite": {"dbPath": " "}}, "sqlite.dbPath is required"),
    ],
)
def test_validation_rejects(data: dict[str, Any], message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        _validate(data)
    assert message in str(excinfo.value)


def test_validation_accepts_case_insensitive_enums() -> None:
    _validate(_base(severity="info", method="post", latencyMode="WARN"))


def test_resolve_config_path_prefers_yaml(tmp_path: Path) -> None:
    assert resolve_config_path(None, cwd=tmp_path) == tmp_path / "config.yaml"

    (tmp_path / "config.json").write_text("{}", encoding="utf-8")
    assert resolve_config_path(None, cwd=tmp_path) == tmp_path / "config.json"

    (tmp_path / "config.yml").write_text("{}", encoding="utf-8")
    assert resolve_config_path(None, cwd=tmp_path) == tmp_path / "config.yml"

    (tmp_path / "config.yaml").write_text("{}", encoding="utf-8")
    assert resolve_config_path(None, cwd=tmp_path) == tmp_path / "config.yaml"

    explicit = tmp_path / "other.json"
    assert resolve_config_path(str(explicit)) == explicit.resolve()


def test_default_templates_describe_the_same_config() -> None:
    assert json.loads(json_template()) == DEFAULT_CONFIG
    assert yaml.safe_load(yaml_template()) == DEFAULT_CONFIG


def test_default_template_is_valid(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml_template(), encoding="utf-8")
    cfg = load_config(path, environ={"SMTP_USER": "u", "SMTP_PASS": "p", "SMS_TOKEN": "t"})
    assert cfg.checks[0].latency_mode == "Warn"
    assert cfg.notifications is not None
    assert cfg.notifications.rules is not None
    assert cfg.notifications.rules.consecutive_failures == 2
    assert cfg.notifications.email is not None
    assert cfg.notifications.email.username == "u"
    assert cfg.notifications.templates.for_event("CertExpiring").sms_text_body.startswith("CERT")
