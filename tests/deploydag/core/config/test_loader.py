"""Tests for deploydag.core.config.loader module."""

from pathlib import Path

import pytest

from deploydag.core.config.loader import CONFIG_PATH_ENV, ConfigLoader
from deploydag.core.exceptions import ConfigurationError

CONFIG = """\
settings:
  audit_dir: ${AUDIT_ROOT}/audit
  default_timeout: 120
environments:
  - {id: qa, tier: qa, test_level: local, credential_ref: "${QA_ORG}"}
  - {id: prod, tier: prod, test_level: full, approval_required: true, credential_ref: prod-org}
stages:
  - {name: validate, environment: qa, action: validate}
  - name: deploy-qa
    environment: qa
    depends_on: [validate]
    when: {branches: [develop]}
    rollback_on_failure: true
"""


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "deploydag.yaml"
    path.write_text(CONFIG)
    return path


class TestLoad:
    def test_load_with_substitution(self, config_file: Path) -> None:
        loader = ConfigLoader(environ={"AUDIT_ROOT": "/var/deploydag", "QA_ORG": "qa-alias"})
        config = loader.load(config_file)

        assert config.settings.audit_dir == "/var/deploydag/audit"
        assert config.settings.default_timeout == 120.0
        assert config.environments[0].credential_ref == "qa-alias"
        assert config.environments[1].approval_required
        assert [s.name for s in config.stages] == ["validate", "deploy-qa"]
        assert config.stages[1].rollback_on_failure

    def test_unset_variable_kept(self, config_file: Path) -> None:
        config = ConfigLoader(environ={}).load(config_file)
        assert config.environments[0].credential_ref == "${QA_ORG}"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("stages: [unclosed\n")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            ConfigLoader(environ={}).load(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="top level must be a mapping"):
            ConfigLoader(environ={}).load(path)

    def test_schema_errors_name_the_field(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(CONFIG.replace("tier: prod", "tier: production"))
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(environ={}).load(path)
        assert "environments.1.tier" in exc_info.value.reason


class TestSearchPath:
    def test_explicit_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader(environ={}).find_config_file(tmp_path / "nope.yaml")

    def test_env_var(self, config_file: Path) -> None:
        loader = ConfigLoader(environ={CONFIG_PATH_ENV: str(config_file)})
        assert loader.find_config_file() == config_file

    def test_env_var_missing_file(self, tmp_path: Path) -> None:
        loader = ConfigLoader(environ={CONFIG_PATH_ENV: str(tmp_path / "gone.yaml")})
        with pytest.raises(ConfigurationError, match=CONFIG_PATH_ENV):
            loader.find_config_file()

    def test_default_names(
        self, config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert ConfigLoader(environ={}).find_config_file() == Path("deploydag.yaml")

    def test_hidden_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / ".deploydag.yaml").write_text(CONFIG)
        monkeypatch.chdir(tmp_path)
        assert ConfigLoader(environ={}).find_config_file() == Path(".deploydag.yaml")

    def test_nothing_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError, match="no configuration file found"):
            ConfigLoader(environ={}).find_config_file()
