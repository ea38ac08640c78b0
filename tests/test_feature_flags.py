from __future__ import annotations

import logging

from refcheck.core import feature_flags


def test_env_and_override_stack(monkeypatch) -> None:
    monkeypatch.delenv("REFCHECK_FEATURES", raising=False)
    assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is False
    assert feature_flags.active_flags() == frozenset()

    monkeypatch.setenv("REFCHECK_FEATURES", " Polish.Disabled ,,")
    assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is True
    assert feature_flags.active_flags() == {feature_flags.POLISH_DISABLED}

    with feature_flags.override(disable={feature_flags.POLISH_DISABLED}):
        assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is False
        with feature_flags.override(enable={feature_flags.STRICT_SCALE, feature_flags.POLISH_DISABLED}):
            assert feature_flags.is_enabled(feature_flags.STRICT_SCALE) is True
            assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is True
        assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is False

    assert feature_flags.is_enabled(feature_flags.POLISH_DISABLED) is True
    assert feature_flags.is_enabled(feature_flags.STRICT_SCALE) is False


def test_app_warns_about_unknown_flags(monkeypatch, caplog) -> None:
    from refcheck.web.app import create_app

    monkeypatch.setenv("REFCHECK_FEATURES", "validator.strict_scale,polish.disabeld")
    caplog.set_level(logging.INFO, logger="refcheck.web.app")
    create_app()

    messages = [record.getMessage() for record in caplog.records]
    assert "ignoring unknown feature flags: polish.disabeld" in messages
    assert "feature flags active" in messages
