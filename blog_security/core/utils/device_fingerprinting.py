"""
Device classification from user-agent strings.

Sessions record a coarse device, browser and operating system category so
that session statistics can be grouped by them. Classification is a pure
lookup over the parsed user agent; the same string always yields the same
categories.
"""

from typing import NamedTuple, Optional

from user_agents import parse as parse_user_agent


UNKNOWN = 'Unknown'
OTHER = 'Other'

# Ordered (substring of lowercased family, category) tables. Order matters:
# Edge and Opera report Chrome-like families, Android reports Linux kernels.
BROWSER_TABLE = (
    ('edge', 'Edge'),
    ('opera', 'Opera'),
    ('chrom', 'Chrome'),
    ('firefox', 'Firefox'),
    ('safari', 'Safari'),
)

OS_TABLE = (
    ('windows', 'Windows'),
    ('ios', 'iOS'),
    ('mac os', 'macOS'),
    ('android', 'Android'),
    ('linux', 'Linux'),
    ('ubuntu', 'Linux'),
    ('fedora', 'Linux'),
    ('debian', 'Linux'),
)


class DeviceClassification(NamedTuple):
    """Coarse device categories derived from a user-agent string."""
    device_type: str
    browser_type: str
    os_type: str


def _lookup(family: str, table) -> str:
    family = (family or '').lower()
    for needle, category in table:
        if needle in family:
            return category
    return OTHER


def classify_user_agent(user_agent_string: Optional[str]) -> DeviceClassification:
    """
    Classify a user-agent string into device, browser and OS categories.

    Args:
        user_agent_string: Raw User-Agent header value

    Returns:
        DeviceClassification; every field is 'Unknown' for an empty string
    """
    if not user_agent_string or not user_agent_string.strip():
        return DeviceClassification(UNKNOWN, UNKNOWN, UNKNOWN)

    user_agent = parse_user_agent(user_agent_string)

    # Tablets first: some tablets also report a mobile browser
    if user_agent.is_tablet:
        device_type = 'Tablet'
    elif user_agent.is_mobile:
        device_type = 'Mobile'
    elif user_agent.is_bot:
        device_type = 'Bot'
    else:
        device_type = 'Desktop'

    return DeviceClassification(
        device_type=device_type,
        browser_type=_lookup(user_agent.browser.family, BROWSER_TABLE),
        os_type=_lookup(user_agent.os.family, OS_TABLE),
    )
