"""Version information for SupportRelay."""

__version__ = "0.3.0"
__version_info__ = tuple(int(i) for i in __version__.split(".") if i.isdigit())

# Build information (populated during CI/CD)
__build_date__ = None
__commit_sha__ = None
