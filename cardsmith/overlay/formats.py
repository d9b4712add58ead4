"""Quoting and parsing for the file formats found on the boot partition.

Each writer helper has a matching reader so that verification reads back exactly
what the builder produced.
"""

import shlex
from dataclasses import dataclass, field


# ---- shell-style KEY=VALUE (dietpi.txt, dietpi-wifi.txt) ----


def shell_quote(value: str) -> str:
    """Single-quote *value* for a POSIX shell."""
    return "'" + value.replace("'", "'\\''") + "'"


def parse_assignments(text: str) -> dict[str, str]:
    """Read ``KEY=VALUE`` lines, unquoting shell-quoted values. Later keys win."""
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if value[:1] in ("'", '"'):
            try:
                parts = shlex.split(value)
            except ValueError:
                parts = [value.strip("'\"")]
            value = parts[0] if parts else ""
        values[key.strip()] = value
    return values


# ---- config.txt ----


@dataclass
class Overlay:
    name: str
    params: dict[str, str] = field(default_factory=dict)
    flags: list[str] = field(default_factory=list)


@dataclass
class BootConfig:
    dtparams: dict[str, str] = field(default_factory=dict)
    overlays: list[Overlay] = field(default_factory=list)
    settings: dict[str, str] = field(default_factory=dict)

    def overlay(self, name: str) -> Overlay | None:
        for ov in self.overlays:
            if ov.name == name:
                return ov
        return None


def format_overlay(name: str, *flags: str, **params: object) -> str:
    """``dtoverlay=name,flag,key=value`` with params in the given order."""
    parts = [name, *flags]
    parts.extend(f"{k}={v}" for k, v in params.items())
    return "dtoverlay=" + ",".join(parts)


def parse_boot_config(text: str) -> BootConfig:
    cfg = BootConfig()
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or line.startswith("[") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if key == "dtparam":
            for item in value.split(","):
                name, _, param = item.partition("=")
                cfg.dtparams[name.strip()] = param.strip() or "on"
        elif key == "dtoverlay":
            name, *rest = value.split(",")
            ov = Overlay(name=name.strip())
            for item in rest:
                if "=" in item:
                    k, _, v = item.partition("=")
                    ov.params[k.strip()] = v.strip()
                else:
                    ov.flags.append(item.strip())
            cfg.overlays.append(ov)
        else:
            cfg.settings[key] = value
    return cfg


# ---- wpa_supplicant.conf ----


def wpa_quote(value: str) -> str:
    # wpa_supplicant reads up to the last quote on the line
    return f'"{value}"'


def parse_wpa_supplicant(text: str) -> tuple[dict[str, str], list[dict[str, str]]]:
    """Global settings and network blocks of a wpa_supplicant.conf."""
    settings: dict[str, str] = {}
    networks: list[dict[str, str]] = []
    current: dict[str, str] | None = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("network=") and line.endswith("{"):
            current = {}
            continue
        if line == "}" and current is not None:
            networks.append(current)
            current = None
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        (current if current is not None else settings)[key.strip()] = value
    return settings, networks


# ---- TOML basic strings ----

_TOML_ESCAPES = {'"': '\\"', "\\": "\\\\", "\b": "\\b", "\t": "\\t", "\f": "\\f"}


def toml_string(value: str) -> str:
    out = []
    for ch in value:
        if ch in _TOML_ESCAPES:
            out.append(_TOML_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def toml_bool(value: bool) -> str:
    return "true" if value else "false"


# ---- plain lists (modules.conf, packages.txt) ----


def parse_list(text: str) -> list[str]:
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


__all__ = [
    "BootConfig",
    "Overlay",
    "format_overlay",
    "parse_assignments",
    "parse_boot_config",
    "parse_list",
    "parse_wpa_supplicant",
    "shell_quote",
    "toml_bool",
    "toml_string",
    "wpa_quote",
]
