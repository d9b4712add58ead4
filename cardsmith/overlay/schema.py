"""Where each fragment lives on the boot partition, per configuration schema."""

from dataclasses import dataclass

from cardsmith.profile.models import ConfigSchema


@dataclass(frozen=True)
class SchemaLayout:
    schema: ConfigSchema
    boot_mount: str
    """Where the boot partition is mounted on the running system."""
    network_file: str
    system_file: str
    script_file: str

    boot_config: str = "config.txt"
    ssh_marker: str = "ssh"
    modules_file: str = "cardsmith/modules.conf"
    packages_file: str = "cardsmith/packages.txt"
    calibration_file: str = "cardsmith/99-calibration.conf"
    readme_file: str = "cardsmith/README.txt"
    pinout_file: str = "cardsmith/PINOUT.txt"
    troubleshooting_file: str = "cardsmith/TROUBLESHOOTING.txt"
    report_file: str = "cardsmith/verification-report.txt"

    @property
    def docs(self) -> tuple[str, str, str]:
        return (self.readme_file, self.pinout_file, self.troubleshooting_file)


LAYOUTS: dict[ConfigSchema, SchemaLayout] = {
    ConfigSchema.DIETPI: SchemaLayout(
        schema=ConfigSchema.DIETPI,
        boot_mount="/boot",
        network_file="dietpi-wifi.txt",
        system_file="dietpi.txt",
        script_file="Automation_Custom_Script.sh",
    ),
    ConfigSchema.RASPIOS: SchemaLayout(
        schema=ConfigSchema.RASPIOS,
        boot_mount="/boot/firmware",
        network_file="wpa_supplicant.conf",
        system_file="custom.toml",
        script_file="cardsmith/firstboot.sh",
    ),
}


def layout_for(schema: ConfigSchema | str) -> SchemaLayout:
    return LAYOUTS[ConfigSchema(schema)]


__all__ = ["LAYOUTS", "SchemaLayout", "layout_for"]
