"""Operator identity used by the command line entry point."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_list, optional_env, require_env_vars


@dataclass(frozen=True, slots=True)
class OperatorConfig:
    actor_id: str
    tenant_id: str
    email: str | None = None
    roles: tuple[str, ...] = ()


def get_operator_config() -> OperatorConfig:
    values = require_env_vars(("SUPPLYLEDGER_ACTOR_ID", "SUPPLYLEDGER_TENANT_ID"))
    return OperatorConfig(
        actor_id=values["SUPPLYLEDGER_ACTOR_ID"].strip(),
        tenant_id=values["SUPPLYLEDGER_TENANT_ID"].strip(),
        email=optional_env("SUPPLYLEDGER_ACTOR_EMAIL"),
        roles=env_list("SUPPLYLEDGER_ACTOR_ROLES"),
    )
