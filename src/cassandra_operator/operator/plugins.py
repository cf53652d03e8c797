"""
Optional features layered on top of a DataCenter.

A plugin declares the keyspaces it needs, which the keyspace manager then
keeps replicated like any other managed keyspace, and reconciles its own
Kubernetes objects during steady-state maintenance.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, List

from ..crds.datacenter import DataCenter, DataCenterStatus
from .cql.keyspaces import CqlKeyspace
from .datacenter.resources.services import build_search_service

if TYPE_CHECKING:
    from .cql.keyspaces import KeyspaceManager


@dataclass
class PluginContext:
    dc: DataCenter
    status: DataCenterStatus
    session: Any
    store: Any
    logger: logging.Logger


class Plugin:
    name = "plugin"

    def is_active(self, dc: DataCenter) -> bool:
        return False

    def sync_keyspaces(self, manager: "KeyspaceManager", dc: DataCenter) -> None:
        """Declares the keyspaces this plugin needs on ``manager``."""

    async def reconcile(self, context: PluginContext) -> bool:
        """Returns True when the plugin changed something."""
        return False


class SearchPlugin(Plugin):
    """Elasticsearch overlay: its admin keyspace and the HTTP Service."""

    name = "search"

    def is_active(self, dc: DataCenter) -> bool:
        return dc.spec.search.enabled

    @staticmethod
    def admin_keyspace(dc: DataCenter) -> str:
        group = dc.spec.search.datacenter_group
        return f"elastic_admin_{group}" if group else "elastic_admin"

    def sync_keyspaces(self, manager: "KeyspaceManager", dc: DataCenter) -> None:
        manager.declare(dc, CqlKeyspace(self.admin_keyspace(dc), rf=3, repair=True))

    async def reconcile(self, context: PluginContext) -> bool:
        return await context.store.apply_service(
            context.dc.metadata.namespace, build_search_service(context.dc), context.logger
        )


class PluginRegistry:
    def __init__(self, plugins: Iterable[Plugin] = ()) -> None:
        self.plugins: List[Plugin] = list(plugins)

    def active_plugins(self, dc: DataCenter) -> List[Plugin]:
        return [p for p in self.plugins if p.is_active(dc)]

    def sync_keyspaces(self, manager: "KeyspaceManager", dc: DataCenter) -> None:
        for plugin in self.active_plugins(dc):
            plugin.sync_keyspaces(manager, dc)

    async def reconcile_all(self, context: PluginContext) -> bool:
        changed = False
        for plugin in self.active_plugins(context.dc):
            try:
                changed = await plugin.reconcile(context) or changed
            except Exception:
                context.logger.error(
                    f"{context.dc.id} plugin '{plugin.name}' failed to reconcile", exc_info=True
                )
        return changed


def default_registry() -> PluginRegistry:
    return PluginRegistry([SearchPlugin()])
