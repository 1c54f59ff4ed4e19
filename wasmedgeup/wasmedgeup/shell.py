"""Shell profile integration.

After a version becomes current, the install root's ``bin`` and ``lib``
links are exposed to the user's shells through small environment scripts
written into the install root and sourced from the shells' startup files.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

import structlog

from .errors import FilesystemError
from .interfaces import ShellIntegration

logger = structlog.get_logger(__name__)

SOURCE_LINE_TAG = "# WasmEdge env"

POSIX_ENV_TEMPLATE = """\
#!/bin/sh
# wasmedgeup shell setup

case ":${PATH}:" in
    *:"{WASMEDGE_BIN_DIR}":*)
        ;;
    *)
        export PATH="{WASMEDGE_BIN_DIR}:$PATH"
        ;;
esac

case $(uname) in
    Linux)
        export LD_LIBRARY_PATH="{WASMEDGE_LIB_DIR}:${LD_LIBRARY_PATH}"
        ;;
    Darwin)
        export DYLD_LIBRARY_PATH="{WASMEDGE_LIB_DIR}:${DYLD_LIBRARY_PATH}"
        ;;
esac

if [ -z "${WASMEDGE_PLUGIN_PATH}" ]; then
    export WASMEDGE_PLUGIN_PATH="{WASMEDGE_PLUGIN_DIR}"
fi
"""

FISH_ENV_TEMPLATE = """\
# wasmedgeup shell setup

if not contains "{WASMEDGE_BIN_DIR}" $PATH
    set -gx PATH "{WASMEDGE_BIN_DIR}" $PATH
end

switch (uname)
    case Linux
        set -gx LD_LIBRARY_PATH "{WASMEDGE_LIB_DIR}" $LD_LIBRARY_PATH
    case Darwin
        set -gx DYLD_LIBRARY_PATH "{WASMEDGE_LIB_DIR}" $DYLD_LIBRARY_PATH
end

if not set -q WASMEDGE_PLUGIN_PATH
    set -gx WASMEDGE_PLUGIN_PATH "{WASMEDGE_PLUGIN_DIR}"
end
"""


def render_env_script(template: str, root: Path) -> str:
    """Fill the install root's directories into an env script template."""
    return (
        template.replace("{WASMEDGE_BIN_DIR}", str(root / "bin"))
        .replace("{WASMEDGE_LIB_DIR}", str(root / "lib"))
        .replace("{WASMEDGE_PLUGIN_DIR}", str(root / "plugin"))
    )


class ShellKind(str, Enum):
    """Shells whose startup files wasmedgeup knows how to edit."""

    POSIX = "sh"
    BASH = "bash"
    ZSH = "zsh"
    FISH = "fish"

    def is_present(self, home: Path, environ: Mapping[str, str]) -> bool:
        """Whether the shell should be configured for this user.

        ``sh`` is always considered, but only an existing ``~/.profile`` is
        edited. Bash needs an existing ``~/.bashrc``; zsh and fish must be the
        login shell or be on the PATH.
        """
        if self is ShellKind.POSIX:
            return True
        if self is ShellKind.BASH:
            return (home / ".bashrc").exists()
        login_shell = environ.get("SHELL", "")
        return login_shell.endswith("/" + self.value) or shutil.which(self.value) is not None

    def config_path(self, home: Path, environ: Mapping[str, str]) -> Path:
        """Startup file the source line is written to."""
        if self is ShellKind.POSIX:
            return home / ".profile"
        if self is ShellKind.BASH:
            return home / ".bashrc"
        if self is ShellKind.ZSH:
            zdotdir = environ.get("ZDOTDIR")
            if zdotdir and Path(zdotdir).is_dir():
                return Path(zdotdir) / ".zshenv"
            return home / ".zshenv"
        return home / ".config" / "fish" / "config.fish"

    @property
    def env_script(self) -> str:
        """Name of the env script inside the install root."""
        return "env.fish" if self is ShellKind.FISH else "env"

    @property
    def env_template(self) -> str:
        return FISH_ENV_TEMPLATE if self is ShellKind.FISH else POSIX_ENV_TEMPLATE

    def source_line(self, script: Path) -> str:
        """Line that sources an env script, tagged for later removal."""
        if self is ShellKind.POSIX:
            return f'if [ -f "{script}" ]; then . "{script}"; fi {SOURCE_LINE_TAG}'
        return f'source "{script}" {SOURCE_LINE_TAG}'

    @property
    def requires_existing_config(self) -> bool:
        return self is ShellKind.POSIX


class ProfileShellIntegration(ShellIntegration):
    """Edits shell startup files in the user's home directory.

    On Windows nothing is edited; a warning asks the user to update PATH
    manually.
    """

    def __init__(self, home: Path | None = None, environ: Mapping[str, str] | None = None) -> None:
        self._home = home or Path.home()
        self._environ = os.environ if environ is None else environ
        self._log = logger.bind(component="shell_integration")

    def configure(self, root: Path) -> None:
        """Write the env scripts and source them from every present shell.

        Raises:
            FilesystemError: If a script or startup file cannot be written.
        """
        if os.name == "nt":
            self._log.warning(
                "shell_integration_unsupported",
                hint=f"add {root / 'bin'} to PATH manually",
            )
            return

        for kind in ShellKind:
            script = root / kind.env_script
            try:
                script.write_text(render_env_script(kind.env_template, root))
            except OSError as e:
                raise FilesystemError(str(script), "write", str(e)) from e

        for kind in ShellKind:
            if not kind.is_present(self._home, self._environ):
                continue
            config = kind.config_path(self._home, self._environ)
            if kind.requires_existing_config and not config.exists():
                continue
            self._append_line(config, kind.source_line(root / kind.env_script))

    def deconfigure(self, root: Path) -> None:
        """Remove the env scripts and every source line pointing at them."""
        if os.name == "nt":
            self._log.warning(
                "shell_integration_unsupported",
                hint=f"remove {root / 'bin'} from PATH manually",
            )
            return

        for kind in ShellKind:
            (root / kind.env_script).unlink(missing_ok=True)
            config = kind.config_path(self._home, self._environ)
            if config.is_file():
                self._remove_lines(config, str(root / kind.env_script))

    def _append_line(self, config: Path, line: str) -> None:
        try:
            existing = config.read_text() if config.exists() else ""
            if line in existing.splitlines():
                return
            config.parent.mkdir(parents=True, exist_ok=True)
            prefix = "" if not existing or existing.endswith("\n") else "\n"
            with config.open("a") as f:
                f.write(f"{prefix}{line}\n")
        except OSError as e:
            raise FilesystemError(str(config), "update", str(e)) from e
        self._log.info("shell_configured", path=str(config))

    def _remove_lines(self, config: Path, script: str) -> None:
        try:
            lines = config.read_text().splitlines(keepends=True)
            kept = [
                line for line in lines if not (SOURCE_LINE_TAG in line and f'"{script}"' in line)
            ]
            if len(kept) != len(lines):
                config.write_text("".join(kept))
                self._log.info("shell_deconfigured", path=str(config))
        except OSError as e:
            raise FilesystemError(str(config), "update", str(e)) from e
