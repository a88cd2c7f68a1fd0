"""
Unit tests for engine options and option functions.

Run with: pytest tests/unit/test_options.py -v
"""

import pytest

from rampart.core import (
    ConfigurationError,
    EngineOptions,
    apply_options,
    disable_color,
    enable_stats,
    with_concurrency,
    with_config_file,
    with_headers,
    with_interactsh,
    with_network_config,
    with_output_file,
    with_rate_limit,
    with_template_dir,
    with_template_filters,
    with_templates,
    with_verbosity,
    with_workflows,
)
from rampart.core.options import SHARED_HANDLE_FIELDS, changed_shared_fields


class TestEngineOptions:
    """Test suite for the EngineOptions model"""

    def test_defaults(self):
        """Test default values"""
        options = EngineOptions()

        assert options.template_dir == "templates"
        assert options.rate_limit == 150
        assert options.rate_limit_minute == 0
        assert options.concurrency == 25
        assert options.timeout == 10.0
        assert options.templates == []
        assert options.output_file is None

    def test_clone_is_independent(self):
        """Test a clone shares no mutable state with the original"""
        options = EngineOptions(tags=["cve"], headers={"X-Test": "1"})
        copy = options.clone()

        copy.tags.append("rce")
        copy.headers["X-Other"] = "2"
        copy.rate_limit = 5

        assert options.tags == ["cve"]
        assert options.headers == {"X-Test": "1"}
        assert options.rate_limit == 150

    def test_unknown_field_rejected(self):
        """Test unknown option names are rejected"""
        with pytest.raises(ValueError):
            EngineOptions(not_an_option=True)

    def test_from_yaml_accepts_kebab_case(self, tmp_path):
        """Test config files may use kebab-case keys"""
        config = tmp_path / "config.yaml"
        config.write_text("rate-limit: 20\ntemplate-dir: /opt/templates\ntags: [cve]\n")

        options = EngineOptions.from_yaml(str(config))

        assert options.rate_limit == 20
        assert options.template_dir == "/opt/templates"
        assert options.tags == ["cve"]

    def test_from_yaml_invalid_value(self, tmp_path):
        """Test invalid values raise ConfigurationError"""
        config = tmp_path / "config.yaml"
        config.write_text("concurrency: 0\n")

        with pytest.raises(ConfigurationError):
            EngineOptions.from_yaml(str(config))

    def test_from_yaml_not_a_mapping(self, tmp_path):
        """Test a config that is not a mapping is rejected"""
        config = tmp_path / "config.yaml"
        config.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            EngineOptions.from_yaml(str(config))

    def test_from_yaml_missing_file(self, tmp_path):
        """Test a missing config file raises ConfigurationError"""
        with pytest.raises(ConfigurationError):
            EngineOptions.from_yaml(str(tmp_path / "missing.yaml"))


class TestApplyOptions:
    """Test suite for option application"""

    def test_applied_in_order(self):
        """Test later options override earlier ones"""
        options = apply_options(EngineOptions(), [with_concurrency(5), with_concurrency(7)])

        assert options.concurrency == 7

    def test_first_failure_stops_chain(self):
        """Test options after a failing one are not applied"""
        options = EngineOptions()

        with pytest.raises(ConfigurationError):
            apply_options(options, [with_concurrency(5), with_concurrency(0), with_rate_limit(3)])

        assert options.concurrency == 5
        assert options.rate_limit == 150

    def test_validation_error_is_wrapped(self):
        """Test invalid assignments surface as ConfigurationError"""
        def negative_timeout(opts):
            opts.timeout = -1

        with pytest.raises(ConfigurationError, match="negative_timeout"):
            apply_options(EngineOptions(), [negative_timeout])

    def test_value_error_is_wrapped(self):
        """Test errors raised by custom options surface as ConfigurationError"""
        def broken(opts):
            raise ValueError("bad value")

        with pytest.raises(ConfigurationError, match="bad value"):
            apply_options(EngineOptions(), [broken])

    def test_any_exception_is_wrapped(self):
        """Test arbitrary errors from custom options surface as ConfigurationError"""
        def crashing(opts):
            raise RuntimeError("boom")

        with pytest.raises(ConfigurationError, match="boom") as excinfo:
            apply_options(EngineOptions(), [crashing])

        assert isinstance(excinfo.value.__cause__, RuntimeError)


class TestOptionFunctions:
    """Test suite for the option helpers"""

    def test_rate_limit_per_second_resets_minute(self):
        """Test setting one window resets the other"""
        options = apply_options(
            EngineOptions(),
            [with_rate_limit(100, per="minute"), with_rate_limit(10)],
        )

        assert options.rate_limit == 10
        assert options.rate_limit_minute == 0

    def test_rate_limit_per_minute_resets_second(self):
        options = apply_options(EngineOptions(), [with_rate_limit(100, per="minute")])

        assert options.rate_limit == 0
        assert options.rate_limit_minute == 100

    def test_rate_limit_unknown_window(self):
        """Test unsupported windows are rejected"""
        with pytest.raises(ConfigurationError, match="hour"):
            apply_options(EngineOptions(), [with_rate_limit(10, per="hour")])

    def test_rate_limit_negative(self):
        with pytest.raises(ConfigurationError):
            apply_options(EngineOptions(), [with_rate_limit(-1)])

    def test_template_filters_lowercase_severities(self):
        """Test severities are normalized and other filters kept"""
        options = apply_options(
            EngineOptions(tags=["cve"]),
            [with_template_filters(severities=["HIGH", "Critical"], exclude_ids=["x"])],
        )

        assert options.severities == ["high", "critical"]
        assert options.exclude_ids == ["x"]
        assert options.tags == ["cve"]

    def test_template_filters_unknown_severity(self):
        with pytest.raises(ConfigurationError, match="severe"):
            apply_options(EngineOptions(), [with_template_filters(severities=["severe"])])

    def test_templates_and_workflows_accumulate(self):
        """Test template and workflow lists are extended"""
        options = apply_options(
            EngineOptions(),
            [
                with_templates("a.yaml"),
                with_templates("b.yaml", "c/"),
                with_workflows("w.yaml"),
            ],
        )

        assert options.templates == ["a.yaml", "b.yaml", "c/"]
        assert options.workflows == ["w.yaml"]

    def test_headers_merge(self):
        options = apply_options(
            EngineOptions(),
            [with_headers({"A": "1"}), with_headers({"B": "2"})],
        )

        assert options.headers == {"A": "1", "B": "2"}

    def test_network_config_only_sets_given_values(self):
        options = apply_options(EngineOptions(), [with_network_config(timeout=3.5)])

        assert options.timeout == 3.5
        assert options.retries == 1
        assert options.max_host_error == 30

    def test_verbose_and_silent_conflict(self):
        """Test verbose and silent cannot both be set"""
        with pytest.raises(ConfigurationError):
            apply_options(EngineOptions(), [with_verbosity(verbose=True, silent=True)])

    def test_empty_values_rejected(self):
        with pytest.raises(ConfigurationError):
            apply_options(EngineOptions(), [with_template_dir("")])
        with pytest.raises(ConfigurationError):
            apply_options(EngineOptions(), [with_interactsh("")])

    def test_flags(self):
        options = apply_options(
            EngineOptions(),
            [enable_stats(), disable_color(), with_output_file("out.jsonl")],
        )

        assert options.stats is True
        assert options.no_color is True
        assert options.output_file == "out.jsonl"

    def test_config_file_sets_only_given_fields(self, tmp_path):
        """Test a config file leaves unspecified options untouched"""
        config = tmp_path / "config.yaml"
        config.write_text("concurrency: 4\n")

        options = apply_options(
            EngineOptions(),
            [with_rate_limit(20), with_config_file(str(config))],
        )

        assert options.concurrency == 4
        assert options.rate_limit == 20


class TestSharedFields:
    """Test suite for shared-handle change detection"""

    def test_no_changes(self):
        base = EngineOptions()

        assert changed_shared_fields(base, base.clone()) == []

    def test_detects_changes(self):
        base = EngineOptions()
        options = apply_options(base.clone(), [with_output_file("x.jsonl"), with_concurrency(2)])

        assert changed_shared_fields(base, options) == ["output_file"]

    def test_shared_fields_exist(self):
        """Test every shared field is a real option"""
        for name in SHARED_HANDLE_FIELDS:
            assert name in EngineOptions.model_fields


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
