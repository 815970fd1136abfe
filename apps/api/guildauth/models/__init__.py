from __future__ import annotations

from guildauth.models.audit import AuditEvent  # noqa: F401
from guildauth.models.base import Base as Base  # noqa: F401
from guildauth.models.cache import CacheEntry  # noqa: F401
from guildauth.models.guilds import Guild, GuildMember, League, Organization, Tracker  # noqa: F401
from guildauth.models.identity import User  # noqa: F401
from guildauth.models.settings import SettingsRecord  # noqa: F401
