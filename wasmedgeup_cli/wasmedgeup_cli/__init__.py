"""wasmedgeup command-line interface."""

from importlib.metadata import version as get_package_version

__version__ = get_package_version("wasmedgeup")

__all__ = ["__version__"]
