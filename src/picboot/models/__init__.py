"""
Device profiles for PicBoot targets.

Provides the data model shared by the protocol and image layers and the
loader for cpus.xml profile files.
"""

from .profiles import (
    AddressRange,
    DeviceProfile,
    ProfileConfigError,
    parse_profiles,
    load_profiles,
    list_profiles,
    get_profile,
)

__all__ = [
    "AddressRange",
    "DeviceProfile",
    "ProfileConfigError",
    "parse_profiles",
    "load_profiles",
    "list_profiles",
    "get_profile",
]
