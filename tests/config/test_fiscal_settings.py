"""
Settings loading, master key resolution, and the config -> kernel bridges.

The kernel never reads files or the environment; everything here goes
through ``fiscal_config``.
"""

from __future__ import annotations

import pytest
import yaml

from fiscal_config import get_active_config
from fiscal_config.bridges import build_core, build_guard, build_quota, build_vault
from fiscal_config.loader import compute_checksum, load_settings, merge
from fiscal_config.master_key import INSECURE_DEFAULT_KEY, resolve_master_key
from fiscal_config.schema import DatabaseSettings, VaultSettings
from fiscal_kernel.exceptions import MasterKeyError

GOOD_KEY = "k" * 40


def _write(tmp_path, data, name="override.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})

        assert settings.environment == "development"
        assert not settings.is_production
        assert settings.vault.master_key_env == "DNIT_ENCRYPTION_KEY"
        assert settings.vault.kdf_iterations == 10000
        assert settings.permit.expiry_warning_days == 30
        assert settings.modification.window_hours == 24
        assert settings.modification.privileged_roles == ("admin",)
        assert settings.quota.default_monthly_limit == 50
        assert settings.database.url == "sqlite:///fiscal.db"

    def test_override_file_merges(self, tmp_path):
        path = _write(
            tmp_path,
            {"modification": {"window_hours": 48}, "quota": {"near_limit_ratio": 0.9}},
        )

        settings = load_settings(path, environ={})

        assert settings.modification.window_hours == 48
        assert settings.modification.privileged_roles == ("admin",)
        assert settings.quota.near_limit_ratio == 0.9
        assert settings.quota.default_monthly_limit == 50

    def test_override_file_from_environment(self, tmp_path):
        path = _write(tmp_path, {"permit": {"strict_ruc_validation": True}})

        settings = load_settings(environ={"FISCAL_CONFIG_FILE": str(path)})

        assert settings.permit.strict_ruc_validation

    def test_environment_variables_win(self, tmp_path):
        path = _write(tmp_path, {"environment": "staging"})

        settings = load_settings(
            path,
            environ={
                "FISCAL_ENVIRONMENT": "production",
                "DATABASE_URL": "postgresql://u:secret@db/fiscal",
            },
        )

        assert settings.is_production
        assert settings.database.url == "postgresql://u:secret@db/fiscal"

    def test_unknown_key_rejected(self, tmp_path):
        path = _write(tmp_path, {"quota": {"monthy_limit": 10}})

        with pytest.raises(ValueError, match="monthy_limit"):
            load_settings(path, environ={})

    @pytest.mark.parametrize(
        "override",
        [
            {"vault": {"min_key_length": 16}},
            {"vault": {"kdf_iterations": 1}},
            {"vault": {"kdf_iterations": 9999}},
            {"vault": {"iv_bytes": 4}},
            {"vault": {"iv_bytes": 256}},
            {"modification": {"window_hours": 0}},
            {"modification": {"privileged_roles": []}},
            {"quota": {"near_limit_ratio": 1.5}},
            {"quota": {"default_monthly_limit": -1}},
        ],
    )
    def test_out_of_range_rejected(self, tmp_path, override):
        with pytest.raises(ValueError):
            load_settings(_write(tmp_path, override), environ={})

    def test_vault_bounds_accepted(self, tmp_path):
        path = _write(tmp_path, {"vault": {"kdf_iterations": 10000, "iv_bytes": 12}})

        settings = load_settings(path, environ={})

        assert settings.vault.kdf_iterations == 10000
        assert settings.vault.iv_bytes == 12

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_checksum_tracks_effective_data(self, tmp_path):
        baseline = load_settings(environ={})
        again = load_settings(environ={})
        changed = load_settings(
            _write(tmp_path, {"quota": {"default_monthly_limit": 10}}), environ={}
        )

        assert baseline.checksum == again.checksum
        assert baseline.checksum != changed.checksum
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_merge_replaces_lists(self):
        merged = merge({"roles": ["admin"], "x": {"y": 1}}, {"roles": ["root"]})

        assert merged == {"roles": ["root"], "x": {"y": 1}}

    def test_database_repr_redacts_url(self):
        text = repr(DatabaseSettings(url="postgresql://u:secret@db/fiscal"))

        assert "secret" not in text

    def test_active_config_logged(self, captured_logs):
        settings = get_active_config(environ={})

        loaded = [r for r in captured_logs() if r["message"] == "fiscal_config_loaded"]
        assert loaded[0]["checksum"] == settings.checksum
        assert loaded[0]["environment"] == "development"


class TestMasterKey:
    def test_key_from_environment(self):
        key = resolve_master_key(VaultSettings(), {"DNIT_ENCRYPTION_KEY": GOOD_KEY})

        assert key.material == GOOD_KEY.encode()
        assert not key.is_insecure_default
        assert GOOD_KEY not in repr(key)

    def test_short_key_rejected(self):
        with pytest.raises(MasterKeyError) as exc_info:
            resolve_master_key(VaultSettings(), {"DNIT_ENCRYPTION_KEY": "short"})

        assert exc_info.value.code == "MASTER_KEY_INVALID"
        assert exc_info.value.env_var == "DNIT_ENCRYPTION_KEY"

    def test_missing_in_production(self):
        with pytest.raises(MasterKeyError) as exc_info:
            resolve_master_key(VaultSettings(), {}, environment="production")

        assert exc_info.value.code == "MASTER_KEY_MISSING"

    def test_missing_when_required(self):
        with pytest.raises(MasterKeyError) as exc_info:
            resolve_master_key(VaultSettings(require_key=True), {})

        assert exc_info.value.missing

    def test_missing_in_development_falls_back(self, captured_logs):
        key = resolve_master_key(VaultSettings(), {})

        assert key.is_insecure_default
        assert key.material == INSECURE_DEFAULT_KEY
        assert len(key.material) == 32
        warnings = [r for r in captured_logs() if r["message"] == "master_key_missing"]
        assert warnings[0]["level"] == "WARNING"

    def test_custom_env_var(self):
        key = resolve_master_key(VaultSettings(master_key_env="MY_KEY"), {"MY_KEY": GOOD_KEY})

        assert key.source == "MY_KEY"


class TestBridges:
    def test_objects_follow_settings(self, tmp_path, memory_store, clock):
        settings = load_settings(
            _write(
                tmp_path,
                {
                    "modification": {"window_hours": 12, "privileged_roles": ["admin", "auditor"]},
                    "quota": {"default_monthly_limit": 5},
                },
            ),
            environ={},
        )

        guard = build_guard(settings)
        quota = build_quota(settings, memory_store, clock)

        assert guard.max_hours == 12
        assert guard.privileged_roles == frozenset({"admin", "auditor"})
        assert quota.default_monthly_limit == 5

    def test_vault_round_trip(self):
        settings = load_settings(environ={})
        vault = build_vault(
            settings, resolve_master_key(settings.vault, {"DNIT_ENCRYPTION_KEY": GOOD_KEY})
        )

        assert vault.open(vault.seal("secret")) == "secret"
        assert not vault.uses_insecure_default

    def test_build_core_with_key(self, memory_store, clock):
        settings = load_settings(environ={})

        core = build_core(
            memory_store, settings, clock=clock, environ={"DNIT_ENCRYPTION_KEY": GOOD_KEY}
        )

        report = core.startup_report()
        assert report["insecureDefaultKey"] is False
        assert core.clock is clock

    def test_build_core_with_insecure_default(self, memory_store, clock, captured_logs):
        core = build_core(memory_store, load_settings(environ={}), clock=clock, environ={})

        assert core.startup_report()["insecureDefaultKey"] is True
        messages = [r["message"] for r in captured_logs()]
        assert "master_key_missing" in messages
        assert "insecure_default_master_key" in messages

    def test_build_core_refuses_production_without_key(self, memory_store):
        settings = load_settings(environ={"FISCAL_ENVIRONMENT": "production"})

        with pytest.raises(MasterKeyError):
            build_core(memory_store, settings, environ={})

    def test_build_core_loads_settings_when_absent(self, memory_store, tmp_path, captured_logs):
        path = _write(tmp_path, {"modification": {"window_hours": 6}})

        core = build_core(
            memory_store,
            environ={"FISCAL_CONFIG_FILE": str(path), "DNIT_ENCRYPTION_KEY": GOOD_KEY},
        )

        assert core.guard.max_hours == 6
        assert any(r["message"] == "fiscal_config_loaded" for r in captured_logs())
