"""Read and toggle runtime flags such as simulation mode."""

import logging

from sqlmodel import Session, select

from netwatch.flags.models import Setting

logger = logging.getLogger(__name__)

SIMULATION_MODE = "simulation_mode"

KNOWN_FLAGS = frozenset({SIMULATION_MODE})


class UnknownSettingError(ValueError):
    """Raised when a caller tries to set a flag that does not exist."""


def ensure_defaults(session: Session, simulation_mode: bool = False) -> None:
    """Insert default rows for flags that have never been stored."""
    if session.get(Setting, SIMULATION_MODE) is None:
        session.add(Setting(key=SIMULATION_MODE, value=simulation_mode))
        session.commit()


def get_flag(session: Session, key: str) -> bool:
    setting = session.get(Setting, key)
    return setting.value if setting is not None else False


def get_simulation_flag(session: Session) -> bool:
    return get_flag(session, SIMULATION_MODE)


def list_flags(session: Session) -> dict[str, bool]:
    flags = {key: False for key in KNOWN_FLAGS}
    for setting in session.exec(select(Setting)).all():
        flags[setting.key] = setting.value
    return flags


def set_flag(session: Session, key: str, value: bool) -> Setting:
    """Store a flag value. Raises UnknownSettingError for unrecognized keys."""
    if key not in KNOWN_FLAGS:
        raise UnknownSettingError(f"Unknown setting: {key}")

    setting = session.get(Setting, key)
    if setting is None:
        setting = Setting(key=key, value=value)
        session.add(setting)
    else:
        setting.value = value
    session.commit()
    session.refresh(setting)
    logger.info("Setting %s = %s", key, value)
    return setting
