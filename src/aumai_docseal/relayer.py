"""Relayer write path.

The relayer wraps calldata in a transaction and returns its identifier.
Submission is fire-and-forget; polling the transaction is left to callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp

from aumai_docseal.errors import RegistrationSubmissionFailed

logger = logging.getLogger(__name__)

REGISTER_PATH = "/integrations/registration-relayer/v1/register"
VOTE_PATH = "/integrations/proof-verification-relayer/v2/vote"
DEFAULT_TIMEOUT = 30.0


class Relayer(Protocol):
    async def submit(self, tx_data: bytes, destination: str) -> str: ...


def relay_payload(tx_data: bytes, destination: str) -> dict:
    """JSON:API body understood by the relayer."""
    return {
        "data": {
            "attributes": {
                "tx_data": "0x" + tx_data.hex(),
                "destination": destination,
            }
        }
    }


class RelayerClient:
    """HTTP client for the registration and vote relayers."""

    def __init__(
        self,
        base_url: str,
        *,
        register_path: str = REGISTER_PATH,
        vote_path: str = VOTE_PATH,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.register_path = register_path
        self.vote_path = vote_path
        self.timeout = timeout

    async def _post(self, path: str, tx_data: bytes, destination: str) -> str:
        url = self.base_url + path
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=relay_payload(tx_data, destination)) as resp:
                    if resp.status >= 400:
                        raise RegistrationSubmissionFailed(
                            f"relayer returned HTTP {resp.status}"
                        )
                    body = await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise RegistrationSubmissionFailed("relayer request timed out") from exc
        except aiohttp.ClientError as exc:
            raise RegistrationSubmissionFailed(f"relayer request failed: {exc}") from exc
        except ValueError as exc:
            raise RegistrationSubmissionFailed("relayer response is not JSON") from exc

        data = body.get("data") if isinstance(body, dict) else None
        tx_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(tx_id, str) or not tx_id:
            raise RegistrationSubmissionFailed("relayer response carries no transaction id")
        logger.info("relayer accepted transaction %s for %s", tx_id, destination)
        return tx_id

    async def submit(self, tx_data: bytes, destination: str) -> str:
        """Submit registration calldata and return the relayer transaction id.

        Raises:
            RegistrationSubmissionFailed: on transport failure, an HTTP error
                status, a non-JSON body or a response without an id.
        """
        return await self._post(self.register_path, tx_data, destination)

    async def submit_vote(self, tx_data: bytes, destination: str) -> str:
        """Submit query-proof (vote) calldata through the verification relayer."""
        return await self._post(self.vote_path, tx_data, destination)


__all__ = [
    "REGISTER_PATH",
    "VOTE_PATH",
    "Relayer",
    "RelayerClient",
    "relay_payload",
]
