# userdb/plugins/registry.py
#
# The set of user database plugins is fixed. Each PluginID member carries
# its setup and command handler; there is no dynamic loading.

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from userdb.core.errors import InvalidPluginError
from userdb.plugins import cms


class PluginSetting(BaseModel):
    key: str
    value: str


class Plugin(BaseModel):
    id: str
    version: str = ""
    settings: List[PluginSetting] = Field(default_factory=list)


class PluginCommand(BaseModel):
    id: str
    command: str
    payload: str = ""


class PluginCommandReply(BaseModel):
    id: str
    command: str
    payload: str


class PluginID(str, Enum):
    CMS = cms.PLUGIN_ID

    @property
    def implementation(self):
        return _IMPLEMENTATIONS[self]

    def setup(self, engine):
        """Idempotent; creates the plugin's own tables."""
        self.implementation.setup(engine)

    def execute(self, db, command: str, payload: str) -> str:
        return self.implementation.execute(db, command, payload)


_IMPLEMENTATIONS = {
    PluginID.CMS: cms,
}


def resolve_plugin(plugin_id) -> PluginID:
    try:
        return PluginID(plugin_id)
    except ValueError:
        raise InvalidPluginError(f"invalid plugin: {plugin_id}") from None
