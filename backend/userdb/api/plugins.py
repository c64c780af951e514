# userdb/api/plugins.py

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from userdb.api.users import get_userdb, http_error
from userdb.core.errors import UserDBError
from userdb.core.store import UserDB
from userdb.plugins.registry import PluginCommand

router = APIRouter(prefix="/plugins")


class PluginCommandSchema(BaseModel):
    command: str
    payload: str = ""


@router.post("/{plugin_id}/commands")
def exec_plugin_command(plugin_id: str, payload: PluginCommandSchema, db: UserDB = Depends(get_userdb)):
    """Run a plugin command; the reply payload is passed back untouched"""
    try:
        reply = db.plugin_exec(PluginCommand(id=plugin_id, command=payload.command, payload=payload.payload))
    except UserDBError as e:
        raise http_error(e)
    return reply.model_dump()
