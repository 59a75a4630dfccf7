"""
Enforcer registry - builds the configured enforcement backends.
"""

from sqlalchemy.ext.asyncio import AsyncEngine

from hotspot.config import Settings
from hotspot.db.session import create_session_factory
from hotspot.services.chilli_enforcer import ChilliEnforcer
from hotspot.services.iptables_enforcer import IptablesEnforcer
from hotspot.services.network_enforcer import NetworkEnforcer
from hotspot.services.radius_enforcer import RadiusEnforcer


def build_enforcers(
    settings: Settings, radius_engine: AsyncEngine | None = None
) -> list[NetworkEnforcer]:
    """
    Enforcers for settings.enforcer_names, in configured order.

    radius_engine is required when the radius backend is enabled.
    """
    enforcers: list[NetworkEnforcer] = []
    for name in settings.enforcer_names:
        if name == "iptables":
            enforcers.append(IptablesEnforcer(settings))
        elif name == "radius":
            if radius_engine is None:
                raise ValueError("radius enforcer enabled without a database engine")
            enforcers.append(
                RadiusEnforcer(
                    create_session_factory(radius_engine), settings.enforcer_timeout_seconds
                )
            )
        elif name == "chilli":
            enforcers.append(
                ChilliEnforcer(
                    settings.chilli_localusers_path,
                    settings.chilli_reload_argv,
                    settings.enforcer_timeout_seconds,
                )
            )
    return enforcers
