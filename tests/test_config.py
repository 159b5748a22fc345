"""Settings parsing."""

from mizan.core.config import Settings, _split_codes


def test_premium_codes_are_trimmed_upper_cased_and_deduplicated() -> None:
    assert _split_codes(" launch, Ramadan ,,LAUNCH") == frozenset({"LAUNCH", "RAMADAN"})
    assert _split_codes("") == frozenset()


def test_settings_only_carry_fields_the_service_reads() -> None:
    assert "debug" not in Settings.model_fields
    assert {"app_env", "payment_webhook_secret", "premium_codes"} <= set(Settings.model_fields)
