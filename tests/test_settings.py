"""
Tests for configuration loading.
"""
from config.settings import (
    DEFAULT_RETRY_POLICIES,
    POLICIES_FILE,
    AppConfig,
    SalesApiConfig,
    get_config,
    load_policies,
)


class TestPolicies:

    def test_bundled_policies_file(self):
        policies = load_policies(POLICIES_FILE)
        assert set(policies["cache"]) == {"daily", "weekly", "monthly"}
        assert policies["retry"]["critical"].max_attempts == 5
        assert policies["retry"]["interactive"].jitter is False

    def test_partial_file_overrides_only_named(self, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text(
            "cache:\n"
            "  weekly:\n"
            "    ttl: 60\n"
            "    max_size: 10\n",
            encoding="utf-8",
        )

        policies = load_policies(path)

        assert policies["cache"]["weekly"].ttl == 60
        assert policies["cache"]["monthly"].ttl == 600
        assert policies["retry"] == DEFAULT_RETRY_POLICIES

    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        policies = load_policies(tmp_path / "missing.yaml")
        assert policies["cache"]["daily"].ttl == 120
        assert "Using defaults" in caplog.text


class TestAppConfig:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SALES_API_BASE_URL", "https://api.example.com")
        monkeypatch.setenv("SALES_API_TOKEN", "abc")
        monkeypatch.setenv("SALES_API_TIMEOUT", "12")

        api = SalesApiConfig()

        assert api.base_url == "https://api.example.com"
        assert api.token == "abc"
        assert api.timeout == 12.0

    def test_validate_reports_missing_token(self, monkeypatch):
        monkeypatch.delenv("SALES_API_TOKEN", raising=False)
        problems = AppConfig().validate()
        assert problems == {"SALES_API_TOKEN": "not set"}

    def test_validate_reports_missing_policy(self, monkeypatch):
        monkeypatch.setenv("SALES_API_TOKEN", "abc")
        config = AppConfig()
        del config.retry_policies["background"]
        assert config.validate() == {"retry.background": "missing policy"}

    def test_get_config(self):
        config = get_config()
        assert config.cache_policies["weekly"].max_size == 100
