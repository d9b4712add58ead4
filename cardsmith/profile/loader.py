"""Device profile loading.

Profiles are looked up by name in the user directories first, then in the
built-in ``cardsmith/profiles`` directory. A path to a YAML file is also accepted.
"""

from pathlib import Path

from pydantic import ValidationError

from cardsmith.config.user_config import read_yaml_mapping
from cardsmith.core.errors import ConfigError, ProfileError
from cardsmith.core.structlog_logger import get_struct_logger
from cardsmith.profile.models import DeviceProfile


logger = get_struct_logger(__name__)

BUILTIN_PROFILE_DIR = Path(__file__).resolve().parent.parent / "profiles"
PROFILE_SUFFIXES = (".yaml", ".yml")


def profile_search_paths(extra_paths: list[Path] | None = None) -> list[Path]:
    """Existing profile directories, user directories before built-ins."""
    candidates = [p.expanduser() for p in extra_paths or []] + [BUILTIN_PROFILE_DIR]
    return [p for p in candidates if p.is_dir()]


def load_profile_file(path: Path) -> DeviceProfile:
    """Parse and validate a single profile file."""
    try:
        data = read_yaml_mapping(path)
    except ConfigError as e:
        raise ProfileError(e.message, e.context) from e

    # The file stem names the profile unless the file says otherwise
    data.setdefault("name", path.stem)
    try:
        profile = DeviceProfile.model_validate(data)
    except ValidationError as e:
        raise ProfileError(
            f"Invalid device profile {path}: {e}", {"path": str(path)}
        ) from e

    logger.debug("profile_loaded", profile=profile.name, path=str(path))
    return profile


def find_profile_file(name: str, search_paths: list[Path]) -> Path | None:
    for directory in search_paths:
        for suffix in PROFILE_SUFFIXES:
            candidate = directory / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
    return None


def load_profile(
    name_or_path: str, extra_paths: list[Path] | None = None
) -> DeviceProfile:
    """Load a profile by name, or from an explicit YAML path.

    Raises:
        ProfileError: If the profile cannot be found or is invalid
    """
    as_path = Path(name_or_path).expanduser()
    if as_path.suffix in PROFILE_SUFFIXES:
        if not as_path.is_file():
            raise ProfileError(
                f"Profile file not found: {as_path}", {"path": str(as_path)}
            )
        return load_profile_file(as_path)

    search_paths = profile_search_paths(extra_paths)
    found = find_profile_file(name_or_path, search_paths)
    if found is None:
        available = ", ".join(list_profile_names(extra_paths)) or "none"
        raise ProfileError(
            f"Unknown device profile '{name_or_path}' (available: {available})",
            {"profile": name_or_path, "searched": [str(p) for p in search_paths]},
        )
    return load_profile_file(found)


def list_profile_names(extra_paths: list[Path] | None = None) -> list[str]:
    """Sorted names of every profile visible on the search path."""
    names: set[str] = set()
    for directory in profile_search_paths(extra_paths):
        for suffix in PROFILE_SUFFIXES:
            names.update(p.stem for p in directory.glob(f"*{suffix}"))
    return sorted(names)


__all__ = [
    "BUILTIN_PROFILE_DIR",
    "find_profile_file",
    "list_profile_names",
    "load_profile",
    "load_profile_file",
    "profile_search_paths",
]
