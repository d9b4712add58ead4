"""Jinja2 templates for the post-install script and the reference documents."""

from cardsmith.adapters.template_adapter import TemplateAdapter
from cardsmith.overlay.formats import shell_quote


# BCM GPIO number -> physical header pin on the 40-pin connector
HEADER_PINS: dict[int, int] = {
    2: 3, 3: 5, 4: 7, 14: 8, 15: 10, 17: 11, 18: 12, 27: 13, 22: 15, 23: 16,
    24: 18, 10: 19, 9: 21, 25: 22, 11: 23, 8: 24, 7: 26, 5: 29, 6: 31, 12: 32,
    13: 33, 19: 35, 16: 36, 26: 37, 20: 38, 21: 40,
}  # fmt: skip


FIRSTBOOT_SCRIPT = """\
#!/bin/bash
# First-boot setup for profile {{ profile.name }}, generated by cardsmith.
# Each step checks the current state first, so running it again changes nothing.
set -eu

BOOT_DIR={{ layout.boot_mount }}
CARDSMITH_DIR="$BOOT_DIR/cardsmith"
TARGET_USER={{ profile.account.username | shquote }}

ensure_line() {
    grep -qxF -- "$2" "$1" 2>/dev/null || printf '%s\\n' "$2" >> "$1"
}

ensure_group() {
    if getent group "$1" >/dev/null && ! id -nG "$TARGET_USER" | grep -qw -- "$1"; then
        usermod -aG "$1" "$TARGET_USER"
    fi
}

# Kernel modules, loaded in dependency order on every boot
install -D -m 0644 "$CARDSMITH_DIR/modules.conf" /etc/modules-load.d/cardsmith.conf

# Packages from the manifest that are not installed yet
missing=""
while read -r pkg; do
    case "$pkg" in ''|'#'*) continue ;; esac
    dpkg -s "$pkg" >/dev/null 2>&1 || missing="$missing $pkg"
done < "$CARDSMITH_DIR/packages.txt"
if [ -n "$missing" ]; then
    apt-get update
    # shellcheck disable=SC2086
    DEBIAN_FRONTEND=noninteractive apt-get install -y --no-install-recommends $missing
fi
{% if profile.touch %}

# Touch calibration for X11
install -D -m 0644 "$CARDSMITH_DIR/99-calibration.conf" /etc/X11/xorg.conf.d/99-calibration.conf
{% endif %}
{% if profile.display %}

# Console and X on the SPI framebuffer
ensure_line /etc/environment 'FRAMEBUFFER=/dev/fb1'
{% endif %}
{% if schema == "raspios" %}

# Locale and keyboard
if command -v raspi-config >/dev/null 2>&1; then
    raspi-config nonint do_change_locale {{ profile.system.locale | shquote }}
    raspi-config nonint do_configure_keyboard {{ profile.system.keyboard_layout | shquote }}
fi
{% endif %}

# Device access for the login user
if id "$TARGET_USER" >/dev/null 2>&1; then
    for group in video input render spi i2c gpio dialout; do
        ensure_group "$group"
    done
fi

exit 0
"""


README = """\
cardsmith setup summary
=======================

Profile:      {{ profile.name }}
{% if profile.description %}
Description:  {{ profile.description }}
{% endif %}
Layout:       {{ schema }}

Login
-----
Hostname:     {{ profile.system.hostname }}
Username:     {{ profile.account.username }}
Password:     {{ profile.account.password }}
SSH:          {{ "enabled" if profile.system.ssh else "disabled" }}

Change the password after the first login.

Network
-------
Country:      {{ profile.network.country }}
WiFi:         {{ "enabled" if profile.network.wifi_enabled else "disabled" }}
Ethernet:     {{ "enabled" if profile.network.ethernet_enabled else "disabled" }}
{% for net in networks %}
Network {{ loop.index }}:    {{ net.ssid }} ({{ net.key_mgmt }}){% if net.psk %}, key {{ net.psk }}{% endif %}

{% else %}
No WiFi network configured.
{% endfor %}

Hardware
--------
{% if profile.display %}
Display:      {{ profile.display.driver }} {{ profile.display.width }}x{{ profile.display.height }}, rotation {{ profile.display.rotation }}, {{ profile.display.fps }} fps, SPI {{ profile.display.spi_speed_hz }} Hz
{% else %}
Display:      none (HDMI only)
{% endif %}
{% if profile.touch %}
Touch:        {{ profile.touch.controller }}, calibration x {{ profile.touch.calibration.xmin }}-{{ profile.touch.calibration.xmax }}, y {{ profile.touch.calibration.ymin }}-{{ profile.touch.calibration.ymax }}
{% else %}
Touch:        none
{% endif %}
Buses:        SPI {{ onoff(profile.buses.spi) }}, I2C {{ onoff(profile.buses.i2c) }}, UART {{ onoff(profile.buses.uart) }}
Audio:        {{ onoff(profile.audio) }}
Bluetooth:    {{ onoff(profile.bluetooth) }}

Kernel modules
--------------
{% for module in modules %}
  {{ module }}
{% endfor %}

Packages installed on first boot
--------------------------------
{% for pkg in packages %}
  {{ pkg }}
{% else %}
  (none)
{% endfor %}

Files written to the boot partition
-----------------------------------
{% for path in paths %}
  {{ path }}
{% endfor %}
{% if schema == "raspios" %}

Raspberry Pi OS does not run {{ layout.script_file }} by itself. After the first
login run:  sudo bash {{ layout.boot_mount }}/{{ layout.script_file }}
{% endif %}
"""


PINOUT = """\
GPIO assignments for {{ profile.name }}
{{ "=" * (21 + profile.name | length) }}

{{ "%-24s %-6s %s" | format("Function", "GPIO", "Header pin") }}
{% for row in pins %}
{{ "%-24s %-6s %s" | format(row[0], row[1], row[2]) }}
{% else %}
No GPIO peripherals configured.
{% endfor %}
"""


TROUBLESHOOTING = """\
Troubleshooting {{ profile.name }}
{{ "=" * (16 + profile.name | length) }}

Start with {{ layout.report_file }}: it lists every check cardsmith ran against
this card and what it found.

{% if profile.display %}
Display stays white or black
  - Check that {{ layout.boot_config }} contains the fbtft overlay for {{ profile.display.driver }}
    and that display_auto_detect=0 is present.
  - Confirm the panel wiring against PINOUT.txt (DC {{ profile.display.dc_pin }}, RESET {{ profile.display.reset_pin }}).
  - Lower the SPI speed in the profile if the image is garbled.

{% endif %}
{% if profile.touch %}
Touch is offset or mirrored
  - Adjust the calibration extents and swap/invert flags in the profile,
    then regenerate the card configuration.
  - Run evtest on the console to see the raw coordinates.

{% endif %}
{% if networks %}
No network connection
  - The WiFi country is {{ profile.network.country }}; a wrong country can hide channels.
  - Check the SSID and key in {{ layout.network_file }}.

{% endif %}
{% if profile.system.ssh %}
Cannot log in over SSH
  - The board advertises itself as {{ profile.system.hostname }}.local.
  - Log in as {{ profile.account.username }} with the password from README.txt.

{% endif %}
Anything else
  - Re-run the post-install script: sudo bash {{ layout.boot_mount }}/{{ layout.script_file }}
    It only changes what is not already in place.
"""


TEMPLATES: dict[str, str] = {
    "firstboot.sh": FIRSTBOOT_SCRIPT,
    "README.txt": README,
    "PINOUT.txt": PINOUT,
    "TROUBLESHOOTING.txt": TROUBLESHOOTING,
}


def create_template_adapter() -> TemplateAdapter:
    adapter = TemplateAdapter(TEMPLATES)
    adapter.env.filters["shquote"] = shell_quote
    adapter.env.globals["onoff"] = lambda flag: "on" if flag else "off"
    return adapter


__all__ = ["HEADER_PINS", "TEMPLATES", "create_template_adapter"]
