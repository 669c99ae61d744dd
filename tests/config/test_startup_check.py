"""Error handling of scripts/fiscal_startup_check.py."""

import importlib.util
import sys
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "fiscal_startup_check.py"


@pytest.fixture
def startup_check():
    spec = importlib.util.spec_from_file_location("fiscal_startup_check", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.parametrize(
    "content",
    [
        "quota:\n  near_limit_ratio: 5\n",
        "vault:\n  kdf_iterations: 1\n",
        "quota: [unclosed\n",
    ],
)
def test_bad_override_reports_error(startup_check, tmp_path, monkeypatch, capsys, content):
    override = tmp_path / "override.yaml"
    override.write_text(content)
    monkeypatch.setattr(sys, "argv", ["fiscal_startup_check.py", "--config", str(override)])

    assert startup_check.main() == 1

    assert "ERROR [INVALID_SETTINGS]:" in capsys.readouterr().err


def test_missing_override_reports_error(startup_check, tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(
        sys, "argv", ["fiscal_startup_check.py", "--config", str(tmp_path / "absent.yaml")]
    )

    assert startup_check.main() == 1

    assert "ERROR [INVALID_SETTINGS]:" in capsys.readouterr().err
