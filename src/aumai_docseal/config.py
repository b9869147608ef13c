"""Runtime settings.

``Settings.from_env`` is the single place environment variables are read.

Supported variables (all optional):

- ``DOCSEAL_RPC_URL``: JSON-RPC endpoint of the ledger
- ``DOCSEAL_RELAYER_URL``: base URL of the relayer service
- ``DOCSEAL_RELAYER_REGISTER_PATH`` / ``DOCSEAL_RELAYER_VOTE_PATH``
- ``DOCSEAL_REGISTRATION_CONTRACT``: destination of registration calls
- ``DOCSEAL_CERTIFICATES_SMT_CONTRACT``: SMT holding registered certificates
- ``DOCSEAL_STATE_KEEPER_CONTRACT``: contract answering ``getPassportInfo``
- ``DOCSEAL_SMT_DEPTH`` / ``DOCSEAL_TREE_DEPTH``
- ``DOCSEAL_LIMB_BITS`` / ``DOCSEAL_BARRETT_OVERFLOW_BITS``
- ``DOCSEAL_NUMBER_FORMAT``: ``decimal`` or ``hex``
- ``DOCSEAL_HTTP_TIMEOUT``: seconds
- ``DOCSEAL_REGISTER_MISSING_CERTIFICATES``: ``true`` / ``false``
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from aumai_docseal.models import NumberFormat
from aumai_docseal.relayer import REGISTER_PATH, VOTE_PATH

ENV_PREFIX = "DOCSEAL_"
ZERO_ADDRESS = "0x" + "00" * 20

_BOOL_FIELDS = {"register_missing_certificates"}


class Settings(BaseModel):
    """Endpoints, contract addresses and circuit encoding parameters."""

    model_config = ConfigDict(frozen=True)

    rpc_url: str = "https://l2.rarimo.com"
    relayer_url: str = "http://127.0.0.1:8000"
    relayer_register_path: str = REGISTER_PATH
    relayer_vote_path: str = VOTE_PATH

    registration_contract: str = ZERO_ADDRESS
    certificates_smt_contract: str = ZERO_ADDRESS
    state_keeper_contract: str = ZERO_ADDRESS

    smt_depth: int = Field(default=80, ge=1)
    tree_depth: int = Field(default=80, ge=1)
    limb_bits: int = Field(default=120, ge=1)
    barrett_overflow_bits: int = Field(default=4, ge=0)
    number_format: NumberFormat = NumberFormat.decimal

    http_timeout: float = Field(default=30.0, gt=0)
    register_missing_certificates: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``DOCSEAL_*`` variables, defaulting the rest."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            if name in _BOOL_FIELDS:
                overrides[name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                overrides[name] = raw
        return cls.model_validate(overrides)


__all__ = ["ENV_PREFIX", "Settings", "ZERO_ADDRESS"]
