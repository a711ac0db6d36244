"""
Commission policy resolution and maintenance.

A barber has at most one general policy and at most one policy per
service. Resolution prefers the service specific policy and falls back
to the general one. There is no default percentage: a barber without a
policy cannot be settled.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.core.exceptions import PolicyNotFound, ValidationError
from settlement.database import upsert_statement
from settlement.models.commission import CommissionPolicy, GENERAL_SCOPE
from settlement.schemas.commission import CommissionPolicyUpsert

logger = logging.getLogger(__name__)


def validate_policy_input(data: CommissionPolicyUpsert) -> List[str]:
    """Return one message per violated rule, empty when valid."""
    errors = []

    if not data.barber_id or not data.barber_id.strip():
        errors.append("barber_id is required")

    if data.percentage < 0 or data.percentage > 100:
        errors.append("percentage must be between 0 and 100")

    if data.min_amount is not None and data.min_amount < 0:
        errors.append("min_amount cannot be negative")

    if data.max_amount is not None and data.max_amount < 0:
        errors.append("max_amount cannot be negative")

    if (
        data.min_amount is not None
        and data.max_amount is not None
        and data.max_amount < data.min_amount
    ):
        errors.append("max_amount must be greater than or equal to min_amount")

    return errors


class PolicyResolver:
    """Looks up and maintains commission policies."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self,
        barber_id: str,
        service_id: Optional[str] = None,
        fallback_to_general: bool = True,
    ) -> CommissionPolicy:
        """
        Active policy for the pair.

        With service_id, the service specific policy wins; the general
        policy is used only when fallback_to_general is set. Without
        service_id only the general policy is considered.

        Raises:
            PolicyNotFound: nothing applicable is active
        """
        scopes = []
        if service_id:
            scopes.append(service_id)
        if not service_id or fallback_to_general:
            scopes.append(GENERAL_SCOPE)

        result = await self.db.execute(
            select(CommissionPolicy).where(
                CommissionPolicy.barber_id == barber_id,
                CommissionPolicy.scope_key.in_(scopes),
                CommissionPolicy.active.is_(True),
            )
        )
        candidates = {policy.scope_key: policy for policy in result.scalars().all()}

        for scope in scopes:
            if scope in candidates:
                return candidates[scope]

        raise PolicyNotFound(barber_id, service_id)

    async def upsert_policy(self, data: CommissionPolicyUpsert) -> CommissionPolicy:
        """Create or update in place the policy for (barber_id, service_id)."""
        errors = validate_policy_input(data)
        if errors:
            raise ValidationError(errors, "Invalid commission policy")

        scope_key = data.service_id or GENERAL_SCOPE
        now = datetime.now(timezone.utc)
        values = {
            "barber_id": data.barber_id,
            "service_id": data.service_id,
            "percentage": data.percentage,
            "min_amount": data.min_amount,
            "max_amount": data.max_amount,
            "active": data.active,
        }

        insert = upsert_statement(self.db, CommissionPolicy)
        stmt = insert.values(
            scope_key=scope_key,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["barber_id", "scope_key"],
            set_={**values, "updated_at": now},
        )
        await self.db.execute(stmt)

        result = await self.db.execute(
            select(CommissionPolicy)
            .where(
                CommissionPolicy.barber_id == data.barber_id,
                CommissionPolicy.scope_key == scope_key,
            )
            .execution_options(populate_existing=True)
        )
        policy = result.scalar_one()
        logger.info(
            f"Commission policy saved: barber={policy.barber_id} scope={scope_key} "
            f"pct={policy.percentage} min={policy.min_amount} max={policy.max_amount}"
        )
        return policy

    async def list_policies(
        self,
        barber_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[CommissionPolicy]:
        query = select(CommissionPolicy)
        if barber_id:
            query = query.where(CommissionPolicy.barber_id == barber_id)
        if active_only:
            query = query.where(CommissionPolicy.active.is_(True))
        query = query.order_by(CommissionPolicy.barber_id, CommissionPolicy.scope_key)

        result = await self.db.execute(query)
        return list(result.scalars().all())
