"""
Shell integration: record each command from a prompt hook.

The daemon only sees a command once the shell flushes its history file,
which bash does at exit by default. The hook records every command as the
next prompt is drawn instead, through `remindr record`.

Whether the hook records anything is controlled by an on/off switch in
the state directory, so it can be paused without editing shell rc files.
A missing switch file means enabled.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

ENABLED = "enabled"
DISABLED = "disabled"

SUPPORTED_SHELLS = ("bash", "zsh")

# Runs before each prompt; `history 1` is the command just finished
_BASH_HOOK = """\
# remindr shell integration (bash)
# Add to ~/.bashrc:  eval "$(remindr hook bash)"
__remindr_record() {{
    local cmd
    cmd=$(HISTTIMEFORMAT= builtin history 1 | sed -e 's/^ *[0-9][0-9]* *//')
    [ -n "$cmd" ] || return
    (REMINDR_LAST_CMD="$cmd" command {program} record >/dev/null 2>&1 &)
}}
case ";${{PROMPT_COMMAND}};" in
    *";__remindr_record;"*) ;;
    *) PROMPT_COMMAND="__remindr_record${{PROMPT_COMMAND:+;$PROMPT_COMMAND}}" ;;
esac
"""

# preexec sees the command line as typed; precmd records it once it ran
_ZSH_HOOK = """\
# remindr shell integration (zsh)
# Add to ~/.zshrc:  eval "$(remindr hook zsh)"
__remindr_preexec() {{
    __remindr_last_cmd="$1"
}}
__remindr_precmd() {{
    [[ -n "$__remindr_last_cmd" ]] || return
    REMINDR_LAST_CMD="$__remindr_last_cmd" command {program} record >/dev/null 2>&1 &!
    __remindr_last_cmd=""
}}
autoload -Uz add-zsh-hook
add-zsh-hook preexec __remindr_preexec
add-zsh-hook precmd __remindr_precmd
"""


def is_enabled(status_path: Path) -> bool:
    """Whether the prompt hook should record commands."""
    try:
        content = status_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return True
    return content.strip() != DISABLED


def set_enabled(status_path: Path, enabled: bool) -> None:
    status_path.parent.mkdir(parents=True, exist_ok=True)
    status_path.write_text(ENABLED if enabled else DISABLED, encoding="utf-8")
    logger.info("Shell integration %s", ENABLED if enabled else DISABLED)


def hook_script(shell: str, program: str = "remindr") -> str:
    """
    Shell code that installs the prompt hook.

    Args:
        shell: "bash" or "zsh"
        program: Command used to invoke remindr from the hook

    Raises:
        ValueError: for an unsupported shell
    """
    if shell == "bash":
        return _BASH_HOOK.format(program=program)
    if shell == "zsh":
        return _ZSH_HOOK.format(program=program)
    raise ValueError(
        f"Unsupported shell {shell!r} (supported: {', '.join(SUPPORTED_SHELLS)})"
    )
