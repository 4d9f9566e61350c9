"""Version information for mailtrust."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Release information
__title__ = "mailtrust"
__description__ = "Email-authentication control plane: DKIM lifecycle, DNS publishing and domain health"
__author__ = "mailtrust contributors"
__license__ = "MIT"


def get_version() -> str:
    """Return the current version string."""
    return __version__
