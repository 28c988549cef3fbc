"""Tests for featureloop.workflow.scripts."""

from featureloop.workflow.scripts import run_script, wait_for_health_check


class TestRunScript:
    """Tests for run_script()."""

    def test_unconfigured_is_skipped(self, tmp_path):
        result = run_script(None, "auth", tmp_path)
        assert result.ok and result.skipped

    def test_missing_file_is_skipped(self, tmp_path):
        result = run_script("scripts/nope.sh", "auth", tmp_path)
        assert result.ok and result.skipped

    def test_receives_unit_id(self, tmp_path):
        (tmp_path / "s.sh").write_text('echo "unit=$1"\n')
        result = run_script("s.sh", "auth", tmp_path)
        assert result.ok
        assert result.output.strip() == "unit=auth"

    def test_failure(self, tmp_path):
        (tmp_path / "s.sh").write_text("echo bad >&2; exit 4\n")
        result = run_script("s.sh", "auth", tmp_path)
        assert not result.ok
        assert result.exit_code == 4
        assert "bad" in result.output


class TestWaitForHealthCheck:
    """Tests for wait_for_health_check()."""

    def test_passes_after_retries(self, tmp_path):
        # Fails twice, then succeeds
        (tmp_path / "health.sh").write_text(
            'n=$(cat count 2>/dev/null || echo 0); n=$((n+1)); echo $n > count; [ "$n" -ge 3 ]\n'
        )
        sleeps = []
        result = wait_for_health_check("health.sh", "auth", tmp_path, timeout=30, sleep=sleeps.append)
        assert result.ok
        assert sleeps == [2, 2]

    def test_times_out(self, tmp_path):
        (tmp_path / "health.sh").write_text("echo down; exit 1\n")
        sleeps = []
        result = wait_for_health_check("health.sh", "auth", tmp_path, timeout=4, sleep=sleeps.append)
        assert not result.ok
        assert "down" in result.output
        assert sum(sleeps) == 4

    def test_unconfigured_passes(self, tmp_path):
        assert wait_for_health_check(None, "auth", tmp_path, timeout=1).ok
