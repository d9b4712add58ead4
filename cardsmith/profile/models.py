"""Device profile models.

A DeviceProfile is the declarative description of one target board with its
peripherals. Profiles are frozen: operator overrides produce a new copy through
``DeviceProfile.with_overrides`` before a run starts.
"""

from enum import Enum
from typing import Any

from pydantic import Field, field_validator, model_validator

from cardsmith.models.artifact import ArtifactRef, ImageFormat
from cardsmith.models.base import FrozenModel


class ConfigSchema(str, Enum):
    """Layout of the configuration surface on the boot partition."""

    DIETPI = "dietpi"
    RASPIOS = "raspios"


# GPIO pin of each SPI0 chip-select line
SPI0_CHIP_SELECTS: dict[int, int] = {8: 0, 7: 1}

# fbtft panel drivers known to ship with the Raspberry Pi kernel
DISPLAY_DRIVERS = frozenset(
    {"ili9341", "ili9481", "ili9486", "ili9488", "hx8357d", "st7735r", "st7789v"}
)

# Touch controllers and the device-tree overlay that drives them
TOUCH_OVERLAYS: dict[str, str] = {"ads7846": "ads7846", "xpt2046": "ads7846"}


def _single_line(value: str, field: str) -> str:
    if "\n" in value or "\r" in value or "\0" in value:
        raise ValueError(f"{field} must be a single line of text")
    return value


class ImageSource(FrozenModel):
    url: str
    min_size: int = Field(default=50_000_000, ge=0)
    max_size: int | None = Field(default=None, gt=0)
    sha256: str | None = None
    format: ImageFormat | None = None

    @model_validator(mode="after")
    def valid_artifact(self) -> "ImageSource":
        self.to_artifact()
        return self

    def to_artifact(self) -> ArtifactRef:
        return ArtifactRef(
            locator=self.url,
            min_size=self.min_size,
            max_size=self.max_size,
            sha256=self.sha256,
            expected_format=self.format,
        )


class DisplayConfig(FrozenModel):
    """SPI panel driven by fbtft. Defaults match the common 3.5" ILI9486 boards."""

    driver: str = "ili9486"
    width: int = Field(default=480, gt=0)
    height: int = Field(default=320, gt=0)
    rotation: int = 90
    fps: int = Field(default=30, gt=0, le=120)
    spi_speed_hz: int = Field(default=32_000_000, gt=0)
    cs_pin: int = 8
    dc_pin: int = 24
    reset_pin: int = 25
    backlight_pin: int | None = 18
    hdmi_mirror: bool = True

    @field_validator("driver")
    @classmethod
    def known_driver(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in DISPLAY_DRIVERS:
            raise ValueError(
                f"unsupported display driver '{value}', "
                f"expected one of {sorted(DISPLAY_DRIVERS)}"
            )
        return value

    @field_validator("rotation")
    @classmethod
    def quarter_turns(cls, value: int) -> int:
        if value not in (0, 90, 180, 270):
            raise ValueError("rotation must be 0, 90, 180 or 270")
        return value

    @field_validator("cs_pin")
    @classmethod
    def spi0_chip_select(cls, value: int) -> int:
        if value not in SPI0_CHIP_SELECTS:
            raise ValueError("display cs_pin must be GPIO 8 (CE0) or GPIO 7 (CE1)")
        return value

    @property
    def spi_device(self) -> str:
        return f"spi0-{SPI0_CHIP_SELECTS[self.cs_pin]}"

    @property
    def kernel_module(self) -> str:
        return f"fb_{self.driver}"


class TouchCalibration(FrozenModel):
    xmin: int = Field(default=200, ge=0)
    xmax: int = Field(default=3900, ge=0)
    ymin: int = Field(default=200, ge=0)
    ymax: int = Field(default=3900, ge=0)

    @model_validator(mode="after")
    def ordered_extents(self) -> "TouchCalibration":
        if self.xmin >= self.xmax or self.ymin >= self.ymax:
            raise ValueError("calibration minimums must be below maximums")
        return self


class TouchConfig(FrozenModel):
    controller: str = "ads7846"
    cs_pin: int = 7
    irq_pin: int = 17
    spi_speed_hz: int = Field(default=2_000_000, gt=0)
    calibration: TouchCalibration = Field(default_factory=TouchCalibration)
    swap_xy: bool = False
    invert_x: bool = False
    invert_y: bool = False

    @field_validator("controller")
    @classmethod
    def known_controller(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in TOUCH_OVERLAYS:
            raise ValueError(
                f"unsupported touch controller '{value}', "
                f"expected one of {sorted(TOUCH_OVERLAYS)}"
            )
        return value

    @field_validator("cs_pin")
    @classmethod
    def spi0_chip_select(cls, value: int) -> int:
        if value not in SPI0_CHIP_SELECTS:
            raise ValueError("touch cs_pin must be GPIO 8 (CE0) or GPIO 7 (CE1)")
        return value

    @property
    def overlay(self) -> str:
        return TOUCH_OVERLAYS[self.controller]

    @property
    def chip_select(self) -> int:
        return SPI0_CHIP_SELECTS[self.cs_pin]


class BusConfig(FrozenModel):
    spi: bool = False
    i2c: bool = False
    uart: bool = False


class LedTriggers(FrozenModel):
    act: str | None = None
    pwr: str | None = None


class WifiNetwork(FrozenModel):
    ssid: str
    psk: str = ""
    hidden: bool = False

    @field_validator("ssid")
    @classmethod
    def valid_ssid(cls, value: str) -> str:
        _single_line(value, "ssid")
        if not value or len(value.encode("utf-8")) > 32:
            raise ValueError("ssid must be 1 to 32 bytes")
        return value

    @field_validator("psk")
    @classmethod
    def valid_psk(cls, value: str) -> str:
        _single_line(value, "psk")
        # Empty means an open network
        if len(value) > 63:
            raise ValueError("psk must be at most 63 characters, or empty for open")
        return value

    @property
    def key_mgmt(self) -> str:
        return "WPA-PSK" if self.psk else "NONE"


class NetworkConfig(FrozenModel):
    country: str = "US"
    ssid: str = ""
    psk: str = ""
    hidden: bool = False
    wifi_enabled: bool = True
    ethernet_enabled: bool = True
    backup_networks: tuple[WifiNetwork, ...] = ()

    @field_validator("country")
    @classmethod
    def iso_country(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 2 or not value.isalpha():
            raise ValueError("country must be a two-letter ISO 3166 code")
        return value

    @model_validator(mode="after")
    def valid_primary(self) -> "NetworkConfig":
        # Reuse WifiNetwork validation for the primary network
        if self.ssid:
            WifiNetwork(ssid=self.ssid, psk=self.psk, hidden=self.hidden)
        elif self.psk:
            raise ValueError("psk given without an ssid")
        return self

    @property
    def key_mgmt(self) -> str:
        return "WPA-PSK" if self.psk else "NONE"

    def networks(self) -> list[WifiNetwork]:
        """Primary network first, then backups in declared order."""
        nets: list[WifiNetwork] = []
        if self.ssid:
            nets.append(WifiNetwork(ssid=self.ssid, psk=self.psk, hidden=self.hidden))
        nets.extend(self.backup_networks)
        return nets


class SystemConfig(FrozenModel):
    hostname: str = "cardsmith"
    locale: str = "en_US.UTF-8"
    timezone: str = "UTC"
    keyboard_layout: str = "us"
    ssh: bool = True
    packages: tuple[str, ...] = ()
    gpu_mem: int | None = Field(default=None, ge=16, le=944)

    @field_validator("hostname")
    @classmethod
    def rfc1123_hostname(cls, value: str) -> str:
        label = value.strip().lower()
        if (
            not 1 <= len(label) <= 63
            or label.startswith("-")
            or label.endswith("-")
            or any(not (c.isascii() and (c.isalnum() or c == "-")) for c in label)
        ):
            raise ValueError(f"invalid hostname '{value}'")
        return label

    @field_validator("locale", "timezone", "keyboard_layout")
    @classmethod
    def no_whitespace(cls, value: str) -> str:
        if not value or any(c.isspace() or c in "'\"" for c in value):
            raise ValueError("must be a non-empty token without spaces or quotes")
        return value

    @field_validator("packages")
    @classmethod
    def package_names(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for pkg in value:
            if not pkg or any(
                not (c.isascii() and (c.isalnum() or c in "+-.:")) for c in pkg
            ):
                raise ValueError(f"invalid package name '{pkg}'")
        return value


class AccountConfig(FrozenModel):
    username: str = "pi"
    password: str = "cardsmith"

    @field_validator("username")
    @classmethod
    def posix_username(cls, value: str) -> str:
        if (
            not value
            or not value[0].isalpha()
            or any(not (c.isascii() and (c.isalnum() or c in "_-")) for c in value)
        ):
            raise ValueError(f"invalid username '{value}'")
        return value.lower()

    @field_validator("password")
    @classmethod
    def non_empty_password(cls, value: str) -> str:
        _single_line(value, "password")
        if not value:
            raise ValueError("password seed must not be empty")
        return value


class DeviceProfile(FrozenModel):
    """Everything needed to provision one kind of board."""

    name: str
    description: str = ""
    config_schema: ConfigSchema = ConfigSchema.DIETPI
    image: ImageSource
    display: DisplayConfig | None = None
    touch: TouchConfig | None = None
    buses: BusConfig = Field(default_factory=BusConfig)
    audio: bool = True
    bluetooth: bool = True
    leds: LedTriggers = Field(default_factory=LedTriggers)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    kernel_modules: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def slug_name(cls, value: str) -> str:
        if (
            not value
            or not value[0].isascii()
            or not value[0].isalnum()
            or any(not (c.isascii() and (c.isalnum() or c in "._-")) for c in value)
        ):
            raise ValueError(
                f"invalid profile name {value!r}: use letters, digits, '.', '_' and '-'"
            )
        return value

    @field_validator("kernel_modules")
    @classmethod
    def module_names(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for module in value:
            if not module or any(
                not (c.isascii() and (c.isalnum() or c in "_-")) for c in module
            ):
                raise ValueError(f"invalid kernel module name {module!r}")
        return value

    @model_validator(mode="after")
    def spi_peripherals_need_spi(self) -> "DeviceProfile":
        if (self.display or self.touch) and not self.buses.spi:
            raise ValueError("display and touch peripherals require buses.spi: true")
        if (
            self.display
            and self.touch
            and self.display.cs_pin == self.touch.cs_pin
        ):
            raise ValueError("display and touch cannot share a chip-select pin")
        return self

    def with_overrides(self, **sections: dict[str, Any]) -> "DeviceProfile":
        """Return a validated copy with nested fields replaced.

        ``profile.with_overrides(network={"ssid": "NetA"})`` keeps every other
        network field. Validation runs again on the merged data.
        """
        data = self.model_dump()
        for section, values in sections.items():
            if not values:
                continue
            if isinstance(data.get(section), dict):
                data[section] = {**data[section], **values}
            else:
                data[section] = values
        return DeviceProfile.model_validate(data)


__all__ = [
    "AccountConfig",
    "BusConfig",
    "ConfigSchema",
    "DISPLAY_DRIVERS",
    "DeviceProfile",
    "DisplayConfig",
    "ImageSource",
    "LedTriggers",
    "NetworkConfig",
    "SPI0_CHIP_SELECTS",
    "SystemConfig",
    "TOUCH_OVERLAYS",
    "TouchCalibration",
    "TouchConfig",
    "WifiNetwork",
]
