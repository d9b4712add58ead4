"""Kernel module list resolution.

Modules are deduplicated with ``-`` and ``_`` treated as the same character, and
ordered so that every module comes after the modules it depends on. Among
independent modules the first-seen order is kept.
"""

from collections.abc import Iterable, Mapping

from cardsmith.core.errors import OverlayError
from cardsmith.profile.models import DeviceProfile


# module -> modules that must be loaded first
KNOWN_DEPENDENCIES: dict[str, tuple[str, ...]] = {
    "spidev": ("spi_bcm2835",),
    "fbtft": ("spi_bcm2835",),
    "fb_ili9341": ("fbtft",),
    "fb_ili9481": ("fbtft",),
    "fb_ili9486": ("fbtft",),
    "fb_ili9488": ("fbtft",),
    "fb_hx8357d": ("fbtft",),
    "fb_st7735r": ("fbtft",),
    "fb_st7789v": ("fbtft",),
    "ads7846": ("spi_bcm2835",),
    "i2c_dev": ("i2c_bcm2835",),
}


def normalize_module(name: str) -> str:
    return name.strip().replace("-", "_")


def implied_modules(profile: DeviceProfile) -> list[str]:
    """Bus, display and touch drivers the profile's peripherals need."""
    modules: list[str] = []
    if profile.buses.spi:
        modules += ["spi_bcm2835", "spidev"]
    if profile.buses.i2c:
        modules += ["i2c_bcm2835", "i2c_dev"]
    if profile.display is not None:
        modules += ["fbtft", profile.display.kernel_module]
    if profile.touch is not None:
        modules.append(profile.touch.overlay)
    if profile.audio:
        modules.append("snd_bcm2835")
    return modules


def order_modules(
    modules: Iterable[str],
    dependencies: Mapping[str, Iterable[str]] = KNOWN_DEPENDENCIES,
) -> list[str]:
    """Deduplicate and sort *modules* dependencies-first.

    Dependencies of a listed module are pulled in even when not listed.

    Raises:
        OverlayError: If the dependency table contains a cycle
    """
    deps = {
        normalize_module(k): [normalize_module(d) for d in v]
        for k, v in dependencies.items()
    }
    ordered: list[str] = []
    placed: set[str] = set()

    def visit(module: str, chain: list[str]) -> None:
        if module in placed:
            return
        if module in chain:
            cycle = " -> ".join(chain[chain.index(module) :] + [module])
            raise OverlayError(
                f"Kernel module dependency cycle: {cycle}", {"cycle": cycle}
            )
        for dep in deps.get(module, []):
            visit(dep, chain + [module])
        placed.add(module)
        ordered.append(module)

    for name in modules:
        module = normalize_module(name)
        if module:
            visit(module, [])
    return ordered


def resolve_modules(profile: DeviceProfile) -> list[str]:
    return order_modules([*implied_modules(profile), *profile.kernel_modules])


__all__ = [
    "KNOWN_DEPENDENCIES",
    "implied_modules",
    "normalize_module",
    "order_modules",
    "resolve_modules",
]
