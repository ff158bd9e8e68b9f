"""Screen geometry for the simulators we explore on.

Coordinates used by the explorer are fractions of the screen; a profile turns
them into points. Unknown iPhone/iPad names fall back to a generic profile of
the same family.
"""

import logging

from simscout.models.schemas import DeviceProfile

logger = logging.getLogger(__name__)

GENERIC_IPHONE = DeviceProfile(name="iPhone", width=393, height=852, tab_bar_y=820)
GENERIC_IPAD = DeviceProfile(name="iPad", width=1024, height=1366, tab_bar_y=1330)

DEVICE_PROFILES: dict[str, DeviceProfile] = {
    "iPhone 15": DeviceProfile(name="iPhone 15", width=393, height=852, tab_bar_y=820),
    "iPhone 15 Pro": DeviceProfile(name="iPhone 15 Pro", width=393, height=852, tab_bar_y=820),
    "iPhone 15 Pro Max": DeviceProfile(name="iPhone 15 Pro Max", width=430, height=932, tab_bar_y=898),
    "iPhone 16 Pro": DeviceProfile(name="iPhone 16 Pro", width=402, height=874, tab_bar_y=840),
    "iPhone 16 Pro Max": DeviceProfile(name="iPhone 16 Pro Max", width=440, height=956, tab_bar_y=922),
    "iPhone SE (3rd generation)": DeviceProfile(
        name="iPhone SE (3rd generation)", width=375, height=667, tab_bar_y=642
    ),
    "iPad Pro (12.9-inch) (6th generation)": DeviceProfile(
        name="iPad Pro (12.9-inch) (6th generation)", width=1024, height=1366, tab_bar_y=1330
    ),
    "iPad Pro 13-inch (M4)": DeviceProfile(
        name="iPad Pro 13-inch (M4)", width=1032, height=1376, tab_bar_y=1340
    ),
    "iPad Air 11-inch (M2)": DeviceProfile(
        name="iPad Air 11-inch (M2)", width=820, height=1180, tab_bar_y=1146
    ),
}


def resolve_device_profile(device_name: str) -> DeviceProfile:
    """Resolve the screen profile for a simulator device name.

    Args:
        device_name: Simulator name as passed to ``xcrun simctl``.

    Returns:
        The exact profile when known, otherwise the generic iPad or iPhone
        profile renamed to ``device_name``.
    """
    profile = DEVICE_PROFILES.get(device_name)
    if profile:
        return profile

    generic = GENERIC_IPAD if "ipad" in device_name.lower() else GENERIC_IPHONE
    logger.info(f"No profile for '{device_name}', using generic {generic.name} geometry")
    return DeviceProfile(
        name=device_name,
        width=generic.width,
        height=generic.height,
        tab_bar_y=generic.tab_bar_y,
    )
