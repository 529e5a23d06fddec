"""
Egress MTU resolution for the test container's Docker bridge.

The Docker bridge inside the test container must not use an MTU larger than
the smallest one on the egress path, otherwise forwarded packets get dropped.
Two constraints are known: the MTU of the container's own default-route
interface (L1) and the MTU of the physical host egress interface (L0), which
is measured on the host and handed in through PHY_EGRESS_IFACE_MTU.
"""

import logging
from typing import Optional

from shell import run_command

logger = logging.getLogger(__name__)

DEFAULT_MTU = 1500


def _token_after(words, key):
    for i, word in enumerate(words[:-1]):
        if word == key:
            return words[i + 1]
    return None


def default_route_iface() -> Optional[str]:
    """Name of the interface carrying the default route, or None"""
    result = run_command(['ip', 'route', 'show', 'default'])
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        words = line.split()
        if words and words[0] == 'default':
            iface = _token_after(words, 'dev')
            if iface:
                return iface
    return None


def iface_mtu(iface: str) -> Optional[int]:
    """MTU configured on an interface, or None if it can't be read"""
    result = run_command(['ip', '-o', 'link', 'show', 'dev', iface])
    if result.returncode != 0:
        return None
    value = _token_after(result.stdout.split(), 'mtu')
    if value is None or not value.isdigit():
        return None
    return int(value)


def resolve_mtu(l0_mtu: Optional[int] = None) -> int:
    """Compute the MTU for the container's Docker bridge.

    Returns the smaller of the L1 constraint (the default-route interface MTU,
    capped at DEFAULT_MTU) and l0_mtu. Without a default route, or when the
    interface reports no MTU, the L1 constraint is DEFAULT_MTU. l0_mtu can only
    lower the result. The result is never above DEFAULT_MTU.
    """
    iface = default_route_iface()
    if iface is None:
        logger.debug("no default route, using mtu %d", DEFAULT_MTU)
        return DEFAULT_MTU

    l1_mtu = DEFAULT_MTU
    mtu = iface_mtu(iface)
    if mtu is not None and mtu < DEFAULT_MTU:
        l1_mtu = mtu
    elif mtu is not None and mtu > DEFAULT_MTU:
        # Jumbo frames are never passed through. Unclear whether that is
        # intended; left as is until someone needs a bridge MTU above 1500.
        logger.debug("%s has mtu %d, capping at %d", iface, mtu, DEFAULT_MTU)

    if l0_mtu is not None and l0_mtu < l1_mtu:
        logger.debug("host egress mtu %d is below %s mtu %d", l0_mtu, iface, l1_mtu)
        return l0_mtu
    return l1_mtu


def egress_mtu() -> Optional[int]:
    """Uncapped MTU of this host's default-route interface.

    This is the value to hand to the test container as PHY_EGRESS_IFACE_MTU.
    """
    iface = default_route_iface()
    if iface is None:
        return None
    return iface_mtu(iface)


def mtu_differs(resolved: int) -> bool:
    """Whether the resolved MTU has to be written to the daemon config"""
    return resolved != DEFAULT_MTU
