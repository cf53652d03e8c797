import logging
from typing import TYPE_CHECKING

from ...crds.datacenter import Authentication, DataCenter, DataCenterStatus
from ...crds.errors import CqlConnectionError, OperatorError
from ..datacenter.resources import names
from ..datacenter.resources.secrets import ADMIN_ROLE, KEY_ADMIN_PASSWORD

if TYPE_CHECKING:
    from .connection import CqlSession


class CqlRoleManager:
    """Creates the operator's superuser role once authentication is enabled."""

    def __init__(self, store) -> None:
        self._store = store

    async def reconcile_roles(
        self,
        dc: DataCenter,
        status: DataCenterStatus,
        session: "CqlSession",
        logger: logging.Logger,
    ) -> bool:
        if dc.spec.authentication == Authentication.NONE:
            return False
        if ADMIN_ROLE in status.role_manager.roles:
            return False

        secret = await self._store.read_secret_data(
            dc.metadata.namespace, names.cluster_secret(dc.spec)
        )
        password = secret.get(KEY_ADMIN_PASSWORD)
        if not password:
            logger.warning(f"{dc.id} no {KEY_ADMIN_PASSWORD} in the cluster secret, skipping roles")
            return False

        try:
            await session.execute(
                f"CREATE ROLE IF NOT EXISTS {ADMIN_ROLE} "
                "WITH SUPERUSER = true AND LOGIN = true AND PASSWORD = %s",
                (password,),
            )
        except CqlConnectionError:
            raise
        except OperatorError:
            logger.error(f"{dc.id} failed to create role {ADMIN_ROLE}", exc_info=True)
            return False

        status.role_manager.roles.append(ADMIN_ROLE)
        logger.info(f"{dc.id} role {ADMIN_ROLE} created")
        return True
