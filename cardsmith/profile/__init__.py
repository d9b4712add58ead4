"""Device profiles."""

from cardsmith.profile.loader import list_profile_names, load_profile, load_profile_file
from cardsmith.profile.models import ConfigSchema, DeviceProfile


__all__ = [
    "ConfigSchema",
    "DeviceProfile",
    "list_profile_names",
    "load_profile",
    "load_profile_file",
]
