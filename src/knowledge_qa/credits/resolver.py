"""Credential waterfall and post-success metering."""

from __future__ import annotations

from typing import Any

from loguru import logger

from knowledge_qa.credits.costs import CreditAction, CreditCostTable
from knowledge_qa.credits.ledger import CreditLedger
from knowledge_qa.credits.teams import TeamDirectory
from knowledge_qa.errors import (
    AuthRequiredError,
    ConfigurationError,
    InsufficientCreditsError,
)
from knowledge_qa.types import CredentialContext, KeySource, MeteringResult

SERVER_KEY_MISSING_MESSAGE = (
    "Server AI not configured. Please use BYOK mode (add your API key in Settings) "
    "or join a team."
)
SIGN_IN_REQUIRED_MESSAGE = (
    "Please sign in to use credits, add your own API key, or join a team."
)


class CredentialResolver:
    """Decides which credential funds a request.

    Order, first match wins:
    1. BYOK: a caller-supplied key, never metered.
    2. Team: the caller's team has a shared key, never metered. A key for
       another provider than this deployment's raises `ConfigurationError`.
    3. Credits: a server key exists and the caller is signed in. The
       balance is checked here, before any provider call; the deduction
       happens in `meter` once the action has succeeded.
    Otherwise `ConfigurationError` (no server key) or `AuthRequiredError`
    (not signed in) is raised.
    """

    def __init__(
        self,
        *,
        team_directory: TeamDirectory,
        ledger: CreditLedger,
        cost_table: CreditCostTable | None = None,
        server_key: str | None = None,
        provider: str | None = None,
    ) -> None:
        self.team_directory = team_directory
        self.ledger = ledger
        self.cost_table = cost_table or CreditCostTable()
        self.server_key = server_key
        # Completion backend of this deployment; team keys must match it.
        self.provider = provider

    def resolve(
        self,
        action: CreditAction | str,
        *,
        user_id: str | None = None,
        byok_key: str | None = None,
        quantity: int = 1,
    ) -> CredentialContext:
        action_name = action.value if isinstance(action, CreditAction) else action
        quantity = max(1, quantity)

        if byok_key and byok_key.strip():
            logger.debug(f"[Credits] {action_name}: using caller key")
            return CredentialContext(
                key_source=KeySource.BYOK,
                resolved_key=byok_key.strip(),
                action=action_name,
                quantity=quantity,
                user_id=user_id,
            )

        if user_id:
            team = self.team_directory.get_team_key(user_id)
            if team.has_key and team.key:
                if self.provider not in (None, "offline") and team.provider != self.provider:
                    logger.warning(
                        f"[Credits] team {team.team_name!r} key is for {team.provider}, "
                        f"server runs {self.provider}"
                    )
                    raise ConfigurationError(
                        f"Your team's API key is for {team.provider}, but this server uses "
                        f"{self.provider}. Ask the team owner to add a {self.provider} key."
                    )
                logger.debug(f"[Credits] {action_name}: using key of team {team.team_name!r}")
                return CredentialContext(
                    key_source=KeySource.TEAM,
                    resolved_key=team.key,
                    action=action_name,
                    quantity=quantity,
                    user_id=user_id,
                    team_name=team.team_name,
                )

        if not self.server_key:
            raise ConfigurationError(SERVER_KEY_MISSING_MESSAGE)
        if not user_id:
            raise AuthRequiredError(SIGN_IN_REQUIRED_MESSAGE)

        cost = self.cost_table.cost_of(action_name, quantity)
        balance = self.ledger.get_balance(user_id)
        if balance < cost:
            logger.info(
                f"[Credits] {action_name} blocked for {user_id}: needs {cost}, has {balance}"
            )
            raise InsufficientCreditsError(needed=cost, available=balance)

        return CredentialContext(
            key_source=KeySource.CREDITS,
            resolved_key=self.server_key,
            action=action_name,
            cost_in_credits=cost,
            quantity=quantity,
            user_id=user_id,
        )

    def meter(
        self, context: CredentialContext, metadata: dict[str, Any] | None = None
    ) -> MeteringResult:
        """Deduct the precomputed cost once, after the paid action succeeded.

        A failed deduction is logged for reconciliation and reported in the
        result; it never raises, since the caller's response already exists.
        """

        if not context.is_metered or context.user_id is None:
            return MeteringResult(charged=0, balance=None)
        if context.cost_in_credits == 0:
            return MeteringResult(charged=0, balance=self.ledger.get_balance(context.user_id))

        details = {"quantity": context.quantity, **(metadata or {})}
        try:
            result = self.ledger.deduct(
                context.user_id,
                context.cost_in_credits,
                reason=context.action,
                metadata=details,
            )
        except Exception as exc:
            logger.error(
                f"[Credits] Deduction of {context.cost_in_credits} for {context.user_id} "
                f"({context.action}) raised after a successful action: {exc}"
            )
            return MeteringResult(charged=0, balance=None, success=False, error=str(exc))

        if not result.success:
            logger.error(
                f"[Credits] Deduction of {context.cost_in_credits} for {context.user_id} "
                f"({context.action}) failed after a successful action: {result.error}"
            )
            return MeteringResult(
                charged=0, balance=result.balance, success=False, error=result.error
            )

        logger.info(
            f"[Credits] Charged {context.cost_in_credits} to {context.user_id} "
            f"for {context.action}, {result.balance} remaining"
        )
        return MeteringResult(charged=context.cost_in_credits, balance=result.balance)
