"""ConfigOverlay: turn a device profile into the files for the boot partition.

``build`` is pure. It reads nothing, writes nothing and embeds no timestamps, so
the same profile always yields a byte-identical bundle. ``write`` puts a bundle on
a mounted configuration surface one atomically replaced file at a time.
"""

from pathlib import Path

from cardsmith.adapters.file_adapter import FileSystemAdapter, create_file_adapter
from cardsmith.adapters.template_adapter import TemplateAdapter
from cardsmith.core.errors import ConfigWriteError, FileSystemError, OverlayError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.overlay.bundle import FRAGMENT_ORDER, ConfigBundle, ConfigFile, Fragment
from cardsmith.overlay.formats import (
    format_overlay,
    shell_quote,
    toml_bool,
    toml_string,
    wpa_quote,
)
from cardsmith.overlay.modules import resolve_modules
from cardsmith.overlay.schema import SchemaLayout, layout_for
from cardsmith.overlay.templates import HEADER_PINS, create_template_adapter
from cardsmith.profile.models import ConfigSchema, DeviceProfile


SSH_MARKER_CONTENT = "Enable the SSH server on first boot.\n"


def _onoff(flag: bool) -> str:
    return "on" if flag else "off"


def _lines(*lines: str) -> str:
    return "\n".join(lines) + "\n"


# ---- boot / hardware ----


def display_overlay_line(profile: DeviceProfile) -> str | None:
    d = profile.display
    if d is None:
        return None
    params: dict[str, object] = {
        "width": d.width,
        "height": d.height,
        "rotate": d.rotation,
        "speed": d.spi_speed_hz,
        "fps": d.fps,
        "dc_pin": d.dc_pin,
        "reset_pin": d.reset_pin,
    }
    if d.backlight_pin is not None:
        params["led_pin"] = d.backlight_pin
    return format_overlay("fbtft", d.spi_device, d.driver, **params)


def touch_overlay_line(profile: DeviceProfile) -> str | None:
    t = profile.touch
    if t is None:
        return None
    cal = t.calibration
    return format_overlay(
        t.overlay,
        cs=t.chip_select,
        penirq=t.irq_pin,
        penirq_pull=2,
        speed=t.spi_speed_hz,
        swapxy=int(t.swap_xy),
        pmax=255,
        xohms=150,
        xmin=cal.xmin,
        xmax=cal.xmax,
        ymin=cal.ymin,
        ymax=cal.ymax,
    )


def hdmi_mirror_lines(profile: DeviceProfile) -> list[str]:
    d = profile.display
    if d is None or not d.hdmi_mirror:
        return []
    return [
        "hdmi_force_hotplug=1",
        "hdmi_group=2",
        "hdmi_mode=87",
        f"hdmi_cvt={d.width} {d.height} 60 6 0 0 0",
    ]


def boot_config(profile: DeviceProfile) -> str:
    lines = [
        f"# Boot configuration for profile {profile.name}, generated by cardsmith.",
        "# Regenerate the card configuration instead of editing this file.",
        "[all]",
        f"dtparam=spi={_onoff(profile.buses.spi)}",
        f"dtparam=i2c_arm={_onoff(profile.buses.i2c)}",
        f"enable_uart={int(profile.buses.uart)}",
        f"dtparam=audio={_onoff(profile.audio)}",
    ]
    if profile.system.gpu_mem is not None:
        lines.append(f"gpu_mem={profile.system.gpu_mem}")

    if profile.display is not None or profile.touch is not None:
        # Firmware auto-detection would override the explicit overlays below
        lines += ["display_auto_detect=0", "camera_auto_detect=0"]

    display_line = display_overlay_line(profile)
    if display_line:
        lines += ["", "# SPI display", display_line, *hdmi_mirror_lines(profile)]

    touch_line = touch_overlay_line(profile)
    if touch_line:
        lines += ["", "# Touch controller", touch_line]

    radio = []
    if not profile.bluetooth:
        radio.append("dtoverlay=disable-bt")
    if not profile.network.wifi_enabled:
        radio.append("dtoverlay=disable-wifi")
    if radio:
        lines += ["", *radio]

    leds = []
    if profile.leds.act:
        leds.append(f"dtparam=act_led_trigger={profile.leds.act}")
    if profile.leds.pwr:
        leds.append(f"dtparam=pwr_led_trigger={profile.leds.pwr}")
    if leds:
        lines += ["", *leds]

    return _lines(*lines)


def calibration_conf(profile: DeviceProfile) -> str | None:
    t = profile.touch
    if t is None:
        return None
    cal = t.calibration
    return _lines(
        "# Touch calibration, generated by cardsmith.",
        'Section "InputClass"',
        '\tIdentifier\t"cardsmith touch calibration"',
        '\tMatchProduct\t"ADS7846 Touchscreen"',
        '\tDriver\t"evdev"',
        f'\tOption\t"Calibration"\t"{cal.xmin} {cal.xmax} {cal.ymin} {cal.ymax}"',
        f'\tOption\t"SwapAxes"\t"{int(t.swap_xy)}"',
        f'\tOption\t"InvertX"\t"{int(t.invert_x)}"',
        f'\tOption\t"InvertY"\t"{int(t.invert_y)}"',
        "EndSection",
    )


# ---- network ----


def wpa_supplicant_conf(profile: DeviceProfile) -> str:
    net = profile.network
    lines = [
        f"# WiFi networks for profile {profile.name}, generated by cardsmith.",
        "ctrl_interface=DIR=/var/run/wpa_supplicant GROUP=netdev",
        "update_config=1",
        f"country={net.country}",
    ]
    networks = net.networks()
    for index, wifi in enumerate(networks):
        lines += ["", "network={", f"\tssid={wpa_quote(wifi.ssid)}"]
        if wifi.psk:
            lines.append(f"\tpsk={wpa_quote(wifi.psk)}")
        lines.append(f"\tkey_mgmt={wifi.key_mgmt}")
        if wifi.hidden:
            lines.append("\tscan_ssid=1")
        # Primary network gets the highest priority
        lines += [f"\tpriority={len(networks) - index}", "}"]
    return _lines(*lines)


def dietpi_wifi_txt(profile: DeviceProfile) -> str:
    lines = [
        f"# WiFi networks for profile {profile.name}, generated by cardsmith.",
        "# Lower indexes are tried first.",
    ]
    for index, wifi in enumerate(profile.network.networks()):
        lines += [
            f"aWIFI_SSID[{index}]={shell_quote(wifi.ssid)}",
            f"aWIFI_KEY[{index}]={shell_quote(wifi.psk)}",
            f"aWIFI_KEYMGR[{index}]={shell_quote(wifi.key_mgmt)}",
        ]
    return _lines(*lines)


# ---- system ----


def dietpi_txt(profile: DeviceProfile) -> str:
    system, net = profile.system, profile.network
    return _lines(
        f"# DietPi first-boot settings for profile {profile.name}, "
        "generated by cardsmith.",
        "AUTO_SETUP_ACCEPT_LICENSE=1",
        "AUTO_SETUP_AUTOMATED=1",
        f"AUTO_SETUP_LOCALE={system.locale}",
        f"AUTO_SETUP_KEYBOARD_LAYOUT={system.keyboard_layout}",
        f"AUTO_SETUP_TIMEZONE={system.timezone}",
        f"AUTO_SETUP_NET_HOSTNAME={system.hostname}",
        f"AUTO_SETUP_NET_ETHERNET_ENABLED={int(net.ethernet_enabled)}",
        f"AUTO_SETUP_NET_WIFI_ENABLED={int(net.wifi_enabled)}",
        f"AUTO_SETUP_NET_WIFI_COUNTRY_CODE={net.country}",
        f"AUTO_SETUP_GLOBAL_PASSWORD={shell_quote(profile.account.password)}",
        # -1 Dropbear, 0 no SSH server
        f"AUTO_SETUP_SSH_SERVER_INDEX={-1 if system.ssh else 0}",
        "AUTO_SETUP_CUSTOM_SCRIPT_EXEC=0",
        "SURVEY_OPTED_IN=0",
    )


def wlan_table(profile: DeviceProfile) -> list[str]:
    """Primary network for the Raspberry Pi OS first-boot service."""
    net = profile.network
    if not net.ssid or not net.wifi_enabled:
        return []
    return [
        "",
        "[wlan]",
        f"ssid = {toml_string(net.ssid)}",
        f"password = {toml_string(net.psk)}",
        "password_encrypted = false",
        f"hidden = {toml_bool(net.hidden)}",
        f"country = {toml_string(net.country)}",
    ]


def custom_toml(profile: DeviceProfile) -> str:
    system, account = profile.system, profile.account
    return _lines(
        f"# Raspberry Pi OS first-boot settings for profile {profile.name}, "
        "generated by cardsmith.",
        "config_version = 1",
        "",
        "[system]",
        f"hostname = {toml_string(system.hostname)}",
        "",
        "[user]",
        f"name = {toml_string(account.username)}",
        f"password = {toml_string(account.password)}",
        "password_encrypted = false",
        "",
        "[ssh]",
        f"enabled = {toml_bool(system.ssh)}",
        f"password_authentication = {toml_bool(system.ssh)}",
        "",
        "[locale]",
        f"locale = {toml_string(system.locale)}",
        f"keymap = {toml_string(system.keyboard_layout)}",
        f"timezone = {toml_string(system.timezone)}",
        *wlan_table(profile),
    )


def package_list(profile: DeviceProfile) -> list[str]:
    implied: list[str] = []
    if profile.display is not None:
        implied.append("fbset")
    if profile.touch is not None:
        implied += ["xserver-xorg-input-evdev", "evtest"]
    if profile.buses.i2c:
        implied.append("i2c-tools")
    return list(dict.fromkeys([*implied, *profile.system.packages]))


def packages_txt(profile: DeviceProfile) -> str:
    return _lines(
        "# Packages installed by the post-install script, one per line.",
        *package_list(profile),
    )


def modules_conf(modules: list[str]) -> str:
    return _lines("# Kernel modules in load order, generated by cardsmith.", *modules)


# ---- documents ----


def pin_rows(profile: DeviceProfile) -> list[tuple[str, int, int]]:
    rows: list[tuple[str, int, int]] = []

    def add(function: str, gpio: int) -> None:
        rows.append((function, gpio, HEADER_PINS.get(gpio, 0)))

    if profile.buses.spi:
        add("SPI0 MOSI", 10)
        add("SPI0 MISO", 9)
        add("SPI0 SCLK", 11)
    if profile.display is not None:
        d = profile.display
        add(f"Display CS ({d.spi_device})", d.cs_pin)
        add("Display DC", d.dc_pin)
        add("Display RESET", d.reset_pin)
        if d.backlight_pin is not None:
            add("Display backlight", d.backlight_pin)
    if profile.touch is not None:
        add(f"Touch CS (CE{profile.touch.chip_select})", profile.touch.cs_pin)
        add("Touch IRQ", profile.touch.irq_pin)
    if profile.buses.i2c:
        add("I2C1 SDA", 2)
        add("I2C1 SCL", 3)
    if profile.buses.uart:
        add("UART TX", 14)
        add("UART RX", 15)
    return rows


class ConfigOverlay(StructlogMixin):
    """Builds and writes the configuration overlay for a device profile."""

    def __init__(
        self,
        file_adapter: FileSystemAdapter | None = None,
        template_adapter: TemplateAdapter | None = None,
    ) -> None:
        super().__init__()
        self.file_adapter = file_adapter or create_file_adapter()
        self.template_adapter = template_adapter or create_template_adapter()

    def build(self, profile: DeviceProfile) -> ConfigBundle:
        schema = ConfigSchema(profile.config_schema)
        layout = layout_for(schema)
        modules = resolve_modules(profile)

        entries: list[tuple[Fragment, str, str, int]] = []

        def add(fragment: Fragment, path: str, content: str, mode: int = 0o644) -> None:
            entries.append((fragment, path, content, mode))

        add(Fragment.BOOT, layout.boot_config, boot_config(profile))
        calibration = calibration_conf(profile)
        if calibration is not None:
            add(Fragment.BOOT, layout.calibration_file, calibration)

        if schema == ConfigSchema.RASPIOS:
            add(Fragment.NETWORK, layout.network_file, wpa_supplicant_conf(profile))
            add(Fragment.SYSTEM, layout.system_file, custom_toml(profile))
        else:
            add(Fragment.NETWORK, layout.network_file, dietpi_wifi_txt(profile))
            add(Fragment.SYSTEM, layout.system_file, dietpi_txt(profile))
        add(Fragment.SYSTEM, layout.packages_file, packages_txt(profile))
        if profile.system.ssh:
            add(Fragment.SYSTEM, layout.ssh_marker, SSH_MARKER_CONTENT)

        add(Fragment.MODULES, layout.modules_file, modules_conf(modules))

        context = self._template_context(profile, layout, modules)
        add(
            Fragment.SCRIPT,
            layout.script_file,
            self.template_adapter.render("firstboot.sh", context),
            0o755,
        )

        # Docs list every path, their own included
        context["paths"] = [path for _, path, _, _ in entries] + list(layout.docs)
        for doc_path in layout.docs:
            template = Path(doc_path).name
            add(Fragment.DOCS, doc_path, self.template_adapter.render(template, context))

        bundle = ConfigBundle(
            profile_name=profile.name,
            config_schema=schema,
            files=tuple(
                ConfigFile(
                    path=path,
                    content=content,
                    fragment=fragment,
                    config_schema=schema,
                    mode=mode,
                )
                for fragment, path, content, mode in entries
            ),
        )
        validate_bundle(bundle)
        self.logger.debug(
            "bundle_built",
            profile=profile.name,
            schema=schema.value,
            files=len(bundle.files),
            digest=bundle.digest(),
        )
        return bundle

    @staticmethod
    def _template_context(
        profile: DeviceProfile, layout: SchemaLayout, modules: list[str]
    ) -> dict[str, object]:
        return {
            "profile": profile,
            "schema": layout.schema.value,
            "layout": layout,
            "modules": modules,
            "packages": package_list(profile),
            "networks": profile.network.networks(),
            "pins": pin_rows(profile),
        }

    def write(self, bundle: ConfigBundle, mount_root: Path) -> list[Path]:
        """Write every file of *bundle* below *mount_root* in fragment order.

        Raises:
            ConfigWriteError: If any file cannot be written
        """
        validate_bundle(bundle)
        written: list[Path] = []
        for config_file in bundle.files:
            target = mount_root / config_file.path
            self.write_file(target, config_file.content, config_file.mode)
            written.append(target)

        self.logger.info(
            "bundle_written",
            profile=bundle.profile_name,
            mount_root=str(mount_root),
            files=len(written),
        )
        return written

    def write_file(self, target: Path, content: str, mode: int = 0o644) -> None:
        try:
            self.file_adapter.write_atomic(target, content, mode)
        except FileSystemError as e:
            self.log_error_with_context("config_write_failed", e, path=str(target))
            raise ConfigWriteError(
                f"Failed to write {target}: {e.message}", {"path": str(target)}
            ) from e


def validate_bundle(bundle: ConfigBundle) -> None:
    """Check the invariants every bundle must satisfy before it is written.

    Raises:
        OverlayError: On a schema mix, duplicate path, missing trailing newline
            or out-of-order fragment
    """
    seen: set[str] = set()
    last_rank = 0
    for f in bundle.files:
        if f.config_schema != bundle.config_schema:
            raise OverlayError(
                f"{f.path} uses the {ConfigSchema(f.config_schema).value} layout "
                f"in a {ConfigSchema(bundle.config_schema).value} bundle",
                {"path": f.path},
            )
        if f.path in seen:
            raise OverlayError(f"Duplicate path {f.path} in bundle", {"path": f.path})
        seen.add(f.path)
        if not f.content.endswith("\n"):
            raise OverlayError(
                f"{f.path} does not end with a newline", {"path": f.path}
            )
        rank = FRAGMENT_ORDER.index(Fragment(f.fragment))
        if rank < last_rank:
            raise OverlayError(
                f"{f.path} is out of fragment order", {"path": f.path}
            )
        last_rank = rank


__all__ = [
    "ConfigOverlay",
    "SSH_MARKER_CONTENT",
    "boot_config",
    "display_overlay_line",
    "package_list",
    "touch_overlay_line",
    "validate_bundle",
]
