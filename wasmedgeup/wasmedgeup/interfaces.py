"""Collaborator interfaces for the wasmedgeup core.

The version store and the installer only talk to the host through these
abstract base classes. Concrete implementations live in
:mod:`wasmedgeup.platform` and :mod:`wasmedgeup.shell`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from .models import PlatformDescriptor


class PlatformProbe(ABC):
    """Detects the platform runtimes are installed for."""

    @abstractmethod
    def detect(self) -> PlatformDescriptor:
        """Describe the host.

        Returns:
            Platform descriptor for the current machine.

        Raises:
            UnsupportedPlatformError: If the OS or architecture is unknown.
        """
        ...


class ShellIntegration(ABC):
    """Makes the current runtime visible to the user's shells."""

    @abstractmethod
    def configure(self, root: Path) -> None:
        """Hook the install root into the shell startup files.

        Must be idempotent.

        Args:
            root: Install root whose ``bin`` and ``lib`` symlinks are exposed.
        """
        ...

    @abstractmethod
    def deconfigure(self, root: Path) -> None:
        """Undo :meth:`configure` after the install root was removed.

        Args:
            root: Install root that was removed.
        """
        ...


class NullShellIntegration(ShellIntegration):
    """Shell integration that does nothing."""

    def configure(self, root: Path) -> None:
        pass

    def deconfigure(self, root: Path) -> None:
        pass
