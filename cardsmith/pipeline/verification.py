"""VerificationEngine: re-read a configuration surface and score it.

Every check inspects one written artifact and records exactly one outcome. Checks
never stop the battery: a missing file fails the checks that need it and the
rest still run. A missing top-level file is an error; a present file lacking an
optional-but-recommended setting is a warning.
"""

import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any

from cardsmith.adapters.file_adapter import FileSystemAdapter, create_file_adapter
from cardsmith.core.errors import CardsmithError
from cardsmith.core.structlog_logger import StructlogMixin
from cardsmith.models.verification import CheckOutcome, VerificationResult
from cardsmith.overlay.builder import package_list
from cardsmith.overlay.formats import (
    BootConfig,
    parse_assignments,
    parse_boot_config,
    parse_list,
    parse_wpa_supplicant,
)
from cardsmith.overlay.modules import resolve_modules
from cardsmith.overlay.schema import SchemaLayout, layout_for
from cardsmith.profile.models import ConfigSchema, DeviceProfile


Outcome = tuple[CheckOutcome, str]

OK = CheckOutcome.SUCCESS
WARN = CheckOutcome.WARNING
ERR = CheckOutcome.ERROR


class MissingFile(CardsmithError):
    """A file a check depends on is absent."""


class Surface:
    """Read-through view of a mounted configuration surface for one profile."""

    def __init__(
        self, root: Path, profile: DeviceProfile, file_adapter: FileSystemAdapter
    ) -> None:
        self.root = root
        self.profile = profile
        self.schema = ConfigSchema(profile.config_schema)
        self.layout: SchemaLayout = layout_for(self.schema)
        self.files = file_adapter
        self._cache: dict[str, str | None] = {}

    def text(self, rel_path: str) -> str | None:
        if rel_path not in self._cache:
            self._cache[rel_path] = self.files.read_text_if_exists(self.root / rel_path)
        return self._cache[rel_path]

    def require(self, rel_path: str) -> str:
        content = self.text(rel_path)
        if content is None:
            raise MissingFile(f"{rel_path} is missing")
        return content

    def exists(self, rel_path: str) -> bool:
        return (self.root / rel_path).is_file()

    def boot(self) -> BootConfig:
        return parse_boot_config(self.require(self.layout.boot_config))

    def system_values(self) -> dict[str, Any]:
        """Flattened system settings, keyed the way the schema writes them."""
        content = self.require(self.layout.system_file)
        if self.schema == ConfigSchema.RASPIOS:
            try:
                return tomllib.loads(content)
            except tomllib.TOMLDecodeError as e:
                raise MissingFile(
                    f"{self.layout.system_file} is not valid TOML: {e}"
                ) from e
        return parse_assignments(content)

    def table(self, name: str) -> dict[str, Any]:
        """A TOML table of the system file; absent tables read as empty."""
        value = self.system_values().get(name, {})
        if not isinstance(value, dict):
            raise MissingFile(
                f"{self.layout.system_file}: [{name}] is not a table"
            )
        return value

    def wifi_networks(self) -> list[dict[str, str]]:
        content = self.require(self.layout.network_file)
        if self.schema == ConfigSchema.RASPIOS:
            return parse_wpa_supplicant(content)[1]
        values = parse_assignments(content)
        nets = []
        index = 0
        while f"aWIFI_SSID[{index}]" in values:
            nets.append(
                {
                    "ssid": values[f"aWIFI_SSID[{index}]"],
                    "psk": values.get(f"aWIFI_KEY[{index}]", ""),
                    "key_mgmt": values.get(f"aWIFI_KEYMGR[{index}]", ""),
                }
            )
            index += 1
        return nets


def _presence(rel_path: str) -> Callable[[Surface], Outcome]:
    def check(s: Surface) -> Outcome:
        if s.exists(rel_path):
            return OK, f"{rel_path} present"
        return ERR, f"{rel_path} is missing"

    return check


def _onoff(flag: bool) -> str:
    return "on" if flag else "off"


# ---- boot / hardware ----


def check_boot_present(s: Surface) -> Outcome:
    return _presence(s.layout.boot_config)(s)


Check = Callable[[Surface], Outcome]


def _bus_check(param: str, flag: Callable[[DeviceProfile], bool]) -> Check:
    def check(s: Surface) -> Outcome:
        expected = _onoff(flag(s.profile))
        found = s.boot().dtparams.get(param)
        if found == expected:
            return OK, f"dtparam={param}={expected}"
        return ERR, f"expected dtparam={param}={expected}, found {found or 'nothing'}"

    return check


def check_uart(s: Surface) -> Outcome:
    expected = str(int(s.profile.buses.uart))
    found = s.boot().settings.get("enable_uart")
    if found == expected:
        return OK, f"enable_uart={expected}"
    return ERR, f"expected enable_uart={expected}, found {found or 'nothing'}"


def check_display_driver(s: Surface) -> Outcome:
    display = s.profile.display
    overlay = s.boot().overlay("fbtft")
    if display is None:
        if overlay is not None:
            return WARN, "fbtft overlay present but the profile has no display"
        return OK, "no display configured"
    if overlay is None:
        return ERR, "fbtft display overlay missing"
    if display.driver not in overlay.flags:
        return ERR, f"display driver {display.driver} not in {overlay.flags}"
    if display.spi_device not in overlay.flags:
        return ERR, f"display is not on {display.spi_device}"
    return OK, f"{display.driver} on {display.spi_device}"


def check_display_rotation(s: Surface) -> Outcome:
    display = s.profile.display
    if display is None:
        return OK, "no display configured"
    overlay = s.boot().overlay("fbtft")
    if overlay is None:
        return ERR, "fbtft display overlay missing"
    found = overlay.params.get("rotate")
    if found != str(display.rotation):
        return WARN, f"rotation {found or 'unset'}, expected {display.rotation}"
    return OK, f"rotate={display.rotation}"


def check_display_pins(s: Surface) -> Outcome:
    display = s.profile.display
    if display is None:
        return OK, "no display configured"
    overlay = s.boot().overlay("fbtft")
    if overlay is None:
        return ERR, "fbtft display overlay missing"
    expected = {
        "dc_pin": str(display.dc_pin),
        "reset_pin": str(display.reset_pin),
        "speed": str(display.spi_speed_hz),
        "fps": str(display.fps),
    }
    if display.backlight_pin is not None:
        expected["led_pin"] = str(display.backlight_pin)
    wrong = [
        f"{k}={overlay.params.get(k, 'unset')} (expected {v})"
        for k, v in expected.items()
        if overlay.params.get(k) != v
    ]
    if wrong:
        return WARN, "; ".join(wrong)
    return OK, ", ".join(f"{k}={v}" for k, v in expected.items())


def check_hdmi_mirror(s: Surface) -> Outcome:
    display = s.profile.display
    if display is None or not display.hdmi_mirror:
        return OK, "HDMI mirroring not requested"
    settings = s.boot().settings
    cvt = settings.get("hdmi_cvt", "")
    if (
        settings.get("hdmi_group") == "2"
        and settings.get("hdmi_mode") == "87"
        and cvt.split()[:2] == [str(display.width), str(display.height)]
    ):
        return OK, f"hdmi_cvt={cvt}"
    return WARN, "HDMI output is not matched to the panel resolution"


def check_touch_controller(s: Surface) -> Outcome:
    touch = s.profile.touch
    if touch is None:
        return OK, "no touch controller configured"
    overlay = s.boot().overlay(touch.overlay)
    if overlay is None:
        return ERR, f"{touch.overlay} touch overlay missing"
    if overlay.params.get("cs") != str(touch.chip_select) or overlay.params.get(
        "penirq"
    ) != str(touch.irq_pin):
        return ERR, (
            f"touch wired to cs={overlay.params.get('cs')} "
            f"penirq={overlay.params.get('penirq')}, expected "
            f"cs={touch.chip_select} penirq={touch.irq_pin}"
        )
    return OK, f"{touch.controller} on CE{touch.chip_select}, IRQ GPIO {touch.irq_pin}"


def check_touch_calibration(s: Surface) -> Outcome:
    touch = s.profile.touch
    if touch is None:
        return OK, "no touch controller configured"
    overlay = s.boot().overlay(touch.overlay)
    if overlay is None:
        return ERR, f"{touch.overlay} touch overlay missing"
    cal = touch.calibration
    expected = {
        "xmin": cal.xmin,
        "xmax": cal.xmax,
        "ymin": cal.ymin,
        "ymax": cal.ymax,
        "swapxy": int(touch.swap_xy),
    }
    wrong = [k for k, v in expected.items() if overlay.params.get(k) != str(v)]
    if wrong:
        return WARN, f"calibration differs for {', '.join(wrong)}"
    snippet = s.text(s.layout.calibration_file)
    line = f'"Calibration"\t"{cal.xmin} {cal.xmax} {cal.ymin} {cal.ymax}"'
    if snippet is None or line not in snippet:
        return WARN, f"{s.layout.calibration_file} missing or out of date"
    return OK, f"x {cal.xmin}-{cal.xmax}, y {cal.ymin}-{cal.ymax}"


def check_autodetect(s: Surface) -> Outcome:
    if s.profile.display is None and s.profile.touch is None:
        return OK, "no explicit display overlay to protect"
    settings = s.boot().settings
    enabled = [
        key
        for key in ("display_auto_detect", "camera_auto_detect")
        if settings.get(key) != "0"
    ]
    if enabled:
        return ERR, f"{', '.join(enabled)} not disabled; firmware may override overlays"
    return OK, "display and camera auto-detect disabled"


def check_audio(s: Surface) -> Outcome:
    expected = _onoff(s.profile.audio)
    found = s.boot().dtparams.get("audio")
    if found != expected:
        return WARN, f"expected dtparam=audio={expected}, found {found or 'nothing'}"
    return OK, f"audio {expected}"


def check_bluetooth(s: Surface) -> Outcome:
    disabled = s.boot().overlay("disable-bt") is not None
    if disabled == s.profile.bluetooth:
        state = "disabled" if disabled else "enabled"
        return WARN, f"bluetooth is {state}, profile says otherwise"
    return OK, f"bluetooth {_onoff(s.profile.bluetooth)}"


def check_leds(s: Surface) -> Outcome:
    dtparams = s.boot().dtparams
    leds = s.profile.leds
    wrong = [
        name
        for name, trigger in (("act", leds.act), ("pwr", leds.pwr))
        if trigger and dtparams.get(f"{name}_led_trigger") != trigger
    ]
    if wrong:
        return WARN, f"LED trigger not set for {', '.join(wrong)}"
    return OK, "LED triggers as configured"


# ---- network ----


def check_network_present(s: Surface) -> Outcome:
    return _presence(s.layout.network_file)(s)


def check_country(s: Surface) -> Outcome:
    expected = s.profile.network.country
    if s.schema == ConfigSchema.RASPIOS:
        settings, _ = parse_wpa_supplicant(s.require(s.layout.network_file))
        found = settings.get("country")
    else:
        found = s.system_values().get("AUTO_SETUP_NET_WIFI_COUNTRY_CODE")
    if found != expected:
        return WARN, f"WiFi country {found or 'unset'}, expected {expected}"
    return OK, f"country {expected}"


def check_ssid(s: Surface) -> Outcome:
    net = s.profile.network
    networks = s.wifi_networks()
    if not net.ssid:
        return OK, "no WiFi network configured"
    if not networks or networks[0].get("ssid") != net.ssid:
        return ERR, f"primary network is not '{net.ssid}'"
    return OK, f"SSID '{net.ssid}'"


def check_psk(s: Surface) -> Outcome:
    net = s.profile.network
    if not net.ssid:
        return OK, "no WiFi network configured"
    networks = s.wifi_networks()
    if not networks:
        return ERR, "no network block written"
    primary = networks[0]
    if primary.get("key_mgmt") != net.key_mgmt:
        return ERR, f"key management {primary.get('key_mgmt')}, expected {net.key_mgmt}"
    if primary.get("psk", "") != net.psk:
        return ERR, "pre-shared key does not match the profile"
    return OK, "open network" if not net.psk else "pre-shared key matches"


def check_backups(s: Surface) -> Outcome:
    expected = [n.ssid for n in s.profile.network.networks()]
    found = [n.get("ssid", "") for n in s.wifi_networks()]
    if found != expected:
        return WARN, f"networks {found}, expected {expected}"
    if len(expected) > 1:
        return OK, f"{len(expected) - 1} backup network(s) in priority order"
    return OK, "no backup networks configured"


def check_interfaces(s: Surface) -> Outcome:
    net = s.profile.network
    if s.schema == ConfigSchema.RASPIOS:
        disabled = s.boot().overlay("disable-wifi") is not None
        if disabled == net.wifi_enabled:
            return WARN, "WiFi enablement in config.txt differs from the profile"
        return OK, f"WiFi {_onoff(net.wifi_enabled)}"
    values = s.system_values()
    expected = {
        "AUTO_SETUP_NET_WIFI_ENABLED": str(int(net.wifi_enabled)),
        "AUTO_SETUP_NET_ETHERNET_ENABLED": str(int(net.ethernet_enabled)),
    }
    wrong = [k for k, v in expected.items() if values.get(k) != v]
    if wrong:
        return WARN, f"interface flags differ: {', '.join(wrong)}"
    return OK, (
        f"WiFi {_onoff(net.wifi_enabled)}, Ethernet {_onoff(net.ethernet_enabled)}"
    )


def check_first_boot_wifi(s: Surface) -> Outcome:
    net = s.profile.network
    if s.schema != ConfigSchema.RASPIOS:
        return OK, f"WiFi joined from {s.layout.network_file}"
    wlan = s.table("wlan")
    if not net.ssid or not net.wifi_enabled:
        if wlan:
            return WARN, "[wlan] present although no WiFi network is configured"
        return OK, "no WiFi network configured"
    if wlan.get("ssid") != net.ssid:
        return ERR, f"[wlan] ssid {wlan.get('ssid') or 'unset'}, expected {net.ssid}"
    if wlan.get("password", "") != net.psk:
        return ERR, "[wlan] password does not match the profile"
    if wlan.get("country") != net.country:
        return WARN, f"[wlan] country {wlan.get('country') or 'unset'}, expected {net.country}"
    return OK, f"first-boot WiFi '{net.ssid}'"


# ---- system ----


def check_system_present(s: Surface) -> Outcome:
    if not s.exists(s.layout.system_file):
        return ERR, f"{s.layout.system_file} is missing"
    s.system_values()
    return OK, f"{s.layout.system_file} present"


def _system_setting(
    label: str, dietpi_key: str, toml_path: tuple[str, str], attr: str
) -> Callable[[Surface], Outcome]:
    def check(s: Surface) -> Outcome:
        expected = getattr(s.profile.system, attr)
        values = s.system_values()
        if s.schema == ConfigSchema.RASPIOS:
            found = s.table(toml_path[0]).get(toml_path[1])
        else:
            found = values.get(dietpi_key)
        if found != expected:
            return WARN, f"{label} {found or 'unset'}, expected {expected}"
        return OK, f"{label} {expected}"

    return check


def check_account(s: Surface) -> Outcome:
    account = s.profile.account
    values = s.system_values()
    if s.schema == ConfigSchema.RASPIOS:
        user = s.table("user")
        if user.get("name") != account.username:
            return ERR, f"user {user.get('name') or 'unset'}, expected {account.username}"
        if user.get("password") != account.password:
            return ERR, "password seed does not match the profile"
        return OK, f"user {account.username}"
    if values.get("AUTO_SETUP_GLOBAL_PASSWORD") != account.password:
        return ERR, "password seed does not match the profile"
    return OK, "global password seeded"


def check_ssh_marker(s: Surface) -> Outcome:
    present = s.exists(s.layout.ssh_marker)
    if s.profile.system.ssh:
        if not present:
            return ERR, "SSH requested but the ssh marker file is missing"
        return OK, "ssh marker present"
    if present:
        return WARN, "ssh marker present although SSH is disabled"
    return OK, "SSH disabled"


# ---- modules, packages, script, docs ----


def check_modules(s: Surface) -> Outcome:
    expected = resolve_modules(s.profile)
    found = parse_list(s.require(s.layout.modules_file))
    if found == expected:
        return OK, f"{len(found)} modules in load order"
    missing = [m for m in expected if m not in found]
    if missing:
        return ERR, f"missing modules: {', '.join(missing)}"
    return ERR, f"modules out of dependency order: {found}"


def check_packages(s: Surface) -> Outcome:
    content = s.text(s.layout.packages_file)
    if content is None:
        return ERR, f"{s.layout.packages_file} is missing"
    expected = package_list(s.profile)
    found = parse_list(content)
    if found != expected:
        return WARN, f"package manifest {found}, expected {expected}"
    return OK, f"{len(found)} packages"


def check_script_present(s: Surface) -> Outcome:
    return _presence(s.layout.script_file)(s)


def check_script_idempotent(s: Surface) -> Outcome:
    lines = s.require(s.layout.script_file).splitlines()
    problems = []
    if not lines or lines[0] != "#!/bin/bash":
        problems.append("missing #!/bin/bash")
    if "set -eu" not in (line.strip() for line in lines):
        problems.append("missing 'set -eu'")
    if problems:
        return WARN, "; ".join(problems)
    return OK, "bash script with strict mode"


CHECKS: list[tuple[str, Callable[[Surface], Outcome]]] = [
    ("boot.config_present", check_boot_present),
    ("boot.spi", _bus_check("spi", lambda p: p.buses.spi)),
    ("boot.i2c", _bus_check("i2c_arm", lambda p: p.buses.i2c)),
    ("boot.uart", check_uart),
    ("display.driver", check_display_driver),
    ("display.rotation", check_display_rotation),
    ("display.pins", check_display_pins),
    ("display.hdmi_mirror", check_hdmi_mirror),
    ("touch.controller", check_touch_controller),
    ("touch.calibration", check_touch_calibration),
    ("boot.autodetect_disabled", check_autodetect),
    ("boot.audio", check_audio),
    ("boot.bluetooth", check_bluetooth),
    ("boot.leds", check_leds),
    ("network.file_present", check_network_present),
    ("network.country", check_country),
    ("network.ssid", check_ssid),
    ("network.psk", check_psk),
    ("network.backups", check_backups),
    ("network.interfaces", check_interfaces),
    ("network.first_boot", check_first_boot_wifi),
    ("system.file_present", check_system_present),
    (
        "system.hostname",
        _system_setting(
            "hostname", "AUTO_SETUP_NET_HOSTNAME", ("system", "hostname"), "hostname"
        ),
    ),
    (
        "system.locale",
        _system_setting("locale", "AUTO_SETUP_LOCALE", ("locale", "locale"), "locale"),
    ),
    (
        "system.timezone",
        _system_setting(
            "timezone", "AUTO_SETUP_TIMEZONE", ("locale", "timezone"), "timezone"
        ),
    ),
    (
        "system.keyboard",
        _system_setting(
            "keyboard layout",
            "AUTO_SETUP_KEYBOARD_LAYOUT",
            ("locale", "keymap"),
            "keyboard_layout",
        ),
    ),
    ("system.account", check_account),
    ("ssh.marker", check_ssh_marker),
    ("modules.list", check_modules),
    ("packages.manifest", check_packages),
    ("script.present", check_script_present),
    ("script.idempotent", check_script_idempotent),
]


def _doc_checks(layout: SchemaLayout) -> list[tuple[str, Callable[[Surface], Outcome]]]:
    names = ("docs.readme", "docs.pinout", "docs.troubleshooting")
    return [(name, _presence(path)) for name, path in zip(names, layout.docs, strict=True)]


class VerificationEngine(StructlogMixin):
    """Runs the ordered check battery against a mounted configuration surface."""

    def __init__(self, file_adapter: FileSystemAdapter | None = None) -> None:
        super().__init__()
        self.file_adapter = file_adapter or create_file_adapter()

    def checks_for(
        self, profile: DeviceProfile
    ) -> list[tuple[str, Callable[[Surface], Outcome]]]:
        return CHECKS + _doc_checks(layout_for(profile.config_schema))

    def verify(self, mount_root: Path, profile: DeviceProfile) -> VerificationResult:
        surface = Surface(mount_root, profile, self.file_adapter)
        result = VerificationResult()
        for name, check in self.checks_for(profile):
            try:
                outcome, detail = check(surface)
            except CardsmithError as e:
                # MissingFile and unreadable files both fail the check
                outcome, detail = ERR, e.message
            except (KeyError, TypeError, AttributeError, ValueError) as e:
                # Malformed content fails this check only
                self.logger.warning("verification_check_crashed", check=name, error=str(e))
                outcome, detail = ERR, f"unexpected content: {e}"
            result.record(name, outcome, detail)

        self.logger.info(
            "verification_completed",
            profile=profile.name,
            mount_root=str(mount_root),
            status=result.status.value,
            successes=result.successes,
            warnings=result.warnings,
            errors=result.errors,
        )
        return result


OUTCOME_LABELS = {OK: "[ OK ]", WARN: "[WARN]", ERR: "[FAIL]"}


def render_report(result: VerificationResult, profile_name: str) -> str:
    """Plain-text verification report; the same result always renders the same."""
    lines = [
        "cardsmith verification report",
        "=============================",
        f"Profile: {profile_name}",
        f"Status:  {result.status.value}",
        f"Checks:  {result.successes} passed, {result.warnings} warnings, "
        f"{result.errors} errors",
        "",
    ]
    width = max((len(r.check) for r in result.records), default=0)
    for rec in result.records:
        label = OUTCOME_LABELS[CheckOutcome(rec.outcome)]
        lines.append(f"{label} {rec.check.ljust(width)}  {rec.detail}".rstrip())
    return "\n".join(lines) + "\n"


__all__ = ["CHECKS", "Surface", "VerificationEngine", "render_report"]
