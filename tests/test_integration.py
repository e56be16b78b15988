"""Tests for the shell integration switch and prompt hook scripts."""

import pytest

from remindr.integration import hook_script, is_enabled, set_enabled


class TestSwitch:

    def test_missing_file_means_enabled(self, tmp_path):
        assert is_enabled(tmp_path / "integration_status") is True

    def test_disable_then_enable(self, tmp_path):
        path = tmp_path / "integration_status"
        set_enabled(path, False)
        assert path.read_text() == "disabled"
        assert is_enabled(path) is False

        set_enabled(path, True)
        assert path.read_text() == "enabled"
        assert is_enabled(path) is True

    def test_surrounding_whitespace_ignored(self, tmp_path):
        path = tmp_path / "integration_status"
        path.write_text("disabled\n")
        assert is_enabled(path) is False

    def test_creates_state_dir(self, tmp_path):
        path = tmp_path / "new-home" / "integration_status"
        set_enabled(path, False)
        assert is_enabled(path) is False


class TestHookScript:

    def test_bash_uses_prompt_command(self):
        script = hook_script("bash")
        assert "PROMPT_COMMAND" in script
        assert "__remindr_record()" in script
        assert 'REMINDR_LAST_CMD="$cmd" command remindr record' in script
        # Template braces rendered as shell braces
        assert "{{" not in script
        assert "${PROMPT_COMMAND:+;$PROMPT_COMMAND}" in script

    def test_zsh_uses_hooks(self):
        script = hook_script("zsh")
        assert "add-zsh-hook preexec __remindr_preexec" in script
        assert "add-zsh-hook precmd __remindr_precmd" in script
        assert "command remindr record" in script

    def test_custom_program(self):
        assert "command /opt/bin/remindr record" in hook_script("bash", program="/opt/bin/remindr")

    def test_unsupported_shell(self):
        with pytest.raises(ValueError, match="fish"):
            hook_script("fish")
