"""Tests for featureloop.lib.validate."""

import pytest

from featureloop.lib.validate import SCHEMAS_DIR, ValidationError, validate, validate_before_write

UNIT = {"name": "auth", "description": "Login", "stories": []}


class TestValidate:
    """Tests for validate()."""

    def test_shipped_schemas_exist(self):
        for name in ("unit", "runs", "config"):
            assert (SCHEMAS_DIR / f"{name}.schema.json").exists()

    def test_valid_unit(self):
        validate(UNIT, "unit")

    def test_reports_every_problem(self):
        with pytest.raises(ValidationError) as exc:
            validate({"name": 1}, "unit")
        assert exc.value.schema_name == "unit"
        assert len(exc.value.problems) >= 3
        assert any("description" in p for p in exc.value.problems)
        assert any(p.startswith("name:") for p in exc.value.problems)

    def test_unknown_run_reason_rejected(self):
        data = dict(UNIT, lastRun={"timestamp": "2024-01-01T00:00:00", "reason": "story_completed"})
        with pytest.raises(ValidationError, match="lastRun.reason"):
            validate(data, "unit")

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="no schema"):
            validate({}, "nope")


class TestValidateBeforeWrite:
    """Tests for validate_before_write()."""

    def test_names_target_file(self, tmp_path):
        target = tmp_path / "unit.json"
        with pytest.raises(ValidationError, match="not writing"):
            validate_before_write({}, "unit", target)
        assert not target.exists()
