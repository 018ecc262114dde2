"""The scheduled rate change applied to one guest interface."""
import logging
from dataclasses import dataclass

from psnl_agent.errors import ConfigurationError, RemoteError
from psnl_agent.interface import Rate, apply_rate, decode, encode
from psnl_agent.log import SUCCESS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateAction:
    """Read a guest's NIC, set or clear its rate, write it back.

    Awaiting the action never raises: every failure is logged and reported
    as ``False`` so one guest cannot break another guest's schedule.
    """
    client: object  # ProxmoxClient or anything with read_config/write_config
    node: str
    guest_type: str
    guest_id: int
    interface: str
    rate: Rate

    @property
    def target(self) -> str:
        return f"{self.node}/{self.guest_type}/{self.guest_id} {self.interface}={self.rate}"

    async def apply(self) -> bool:
        current = await self.client.read_config(self.node, self.guest_type, self.guest_id)
        if not current.get(self.interface):
            raise ConfigurationError(
                f"Interface {self.interface} not present in "
                f"{self.node}/{self.guest_type}/{self.guest_id} config"
            )

        updated = apply_rate(decode(str(current[self.interface])), self.rate)
        patch = {self.interface: encode(updated)}
        logger.debug("Writing %s: %s", self.target, patch[self.interface])
        return await self.client.write_config(self.node, self.guest_type, self.guest_id, patch)

    async def __call__(self) -> bool:
        logger.info(f"Executing scheduled task: {self.target}")
        try:
            ok = await self.apply()
        except ConfigurationError as e:
            logger.error(f"{self.target} - Failed to apply: {e}")
            return False
        except RemoteError as e:
            logger.error(f"{self.target} - Failed to apply: {e} (status={e.status_code})")
            return False
        except Exception:
            logger.exception(f"{self.target} - Failed to apply")
            return False

        if ok:
            logger.log(SUCCESS, f"{self.target} - Applied successfully")
        else:
            logger.error(f"{self.target} - Failed to apply: update was not acknowledged")
        return ok
