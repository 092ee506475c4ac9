"""
ApprovalPolicyService -- amount-keyed approval chain resolution.

Responsibility:
    Given ``(module, amount)``, returns the single active approval
    configuration whose ``[min_amount, max_amount)`` range contains the
    amount, as an ordered ApprovalChain.  Also registers (upserts)
    configurations for the configuration installer.

Architecture position:
    Kernel > Services -- collaborator.  Implements the ApprovalPolicyStore
    protocol consumed by RequisitionService and PurchaseOrderService.

Invariants enforced:
    - Ranges are half-open; ``max_amount`` NULL means unbounded.
    - When several active configurations match, the one with the largest
      ``min_amount`` wins (most specific floor).  Ties are broken by name
      so resolution is deterministic.
    - Levels are sorted ascending by ``order`` before use.
    - No match (or a matching configuration without levels) is an error:
      ConfigurationNotFoundError.  There is no silent default chain.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select

from procurement_kernel.db.types import to_decimal
from procurement_kernel.domain.approval import (
    ApprovalChain,
    ApprovalLevel,
    ApprovalModule,
)
from procurement_kernel.exceptions import ConfigurationNotFoundError, ValidationError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.approval_config import (
    ApprovalConfigLevelModel,
    ApprovalConfigModel,
)
from procurement_kernel.services.base import BaseService

logger = get_logger("services.approval_policy")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


class ApprovalPolicyService(BaseService):
    """
    Read-mostly store of approval configurations.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT enforce per-level ``approval_limit``; it is carried on
          the chain for display.
    """

    def resolve(self, module: ApprovalModule, amount: Decimal) -> ApprovalChain:
        """
        Resolve the approval chain for ``amount`` in ``module``.

        Raises:
            ConfigurationNotFoundError: No active configuration matches.
        """
        module = ApprovalModule(module)
        amount = to_decimal(amount)
        config = self.session.execute(
            select(ApprovalConfigModel)
            .where(
                ApprovalConfigModel.module == module.value,
                ApprovalConfigModel.is_active.is_(True),
                ApprovalConfigModel.min_amount <= amount,
                or_(
                    ApprovalConfigModel.max_amount.is_(None),
                    ApprovalConfigModel.max_amount > amount,
                ),
            )
            .order_by(ApprovalConfigModel.min_amount.desc(), ApprovalConfigModel.name)
            .limit(1)
        ).scalar_one_or_none()

        if config is None or not config.levels:
            logger.warning(
                "approval_config_not_found",
                extra={"approval_module": module.value, "amount": str(amount)},
            )
            raise ConfigurationNotFoundError(module.value, str(amount))

        chain = config.to_chain()
        logger.debug(
            "approval_chain_resolved",
            extra={
                "approval_module": module.value,
                "amount": str(amount),
                "config_name": config.name,
                "roles": [role.value for role in chain.roles],
            },
        )
        return chain

    def register(
        self,
        name: str,
        module: ApprovalModule,
        min_amount: Decimal,
        levels: list[ApprovalLevel],
        max_amount: Decimal | None = None,
        is_active: bool = True,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> ApprovalConfigModel:
        """
        Create or replace the configuration named ``name`` in ``module``.

        Raises:
            ValidationError: Empty levels, negative floor, or an empty range.
        """
        module = ApprovalModule(module)
        errors: dict[str, str] = {}
        if not levels:
            errors["levels"] = "at least one level is required"
        if min_amount < 0:
            errors["min_amount"] = "must not be negative"
        if max_amount is not None and max_amount <= min_amount:
            errors["max_amount"] = "must be greater than min_amount"
        orders = [level.order for level in levels]
        if len(set(orders)) != len(orders):
            errors["levels.order"] = "orders must be unique"
        if errors:
            raise ValidationError(f"Invalid approval configuration '{name}'", errors)

        config = self.session.execute(
            select(ApprovalConfigModel).where(
                ApprovalConfigModel.name == name,
                ApprovalConfigModel.module == module.value,
            )
        ).scalar_one_or_none()

        if config is None:
            config = ApprovalConfigModel(
                name=name, module=module.value, created_by_id=actor_id,
            )
            self.session.add(config)
        else:
            config.updated_by_id = actor_id
            config.levels.clear()
            # Old level rows must be gone before new ones reuse their orders
            self.session.flush()

        config.min_amount = min_amount
        config.max_amount = max_amount
        config.is_active = is_active
        config.levels.extend(
            ApprovalConfigLevelModel(
                level_order=level.order,
                name=level.name,
                role=level.role.value,
                approval_limit=level.approval_limit,
            )
            for level in sorted(levels, key=lambda lv: lv.order)
        )
        self.session.flush()

        logger.info(
            "approval_config_registered",
            extra={
                "config_name": name,
                "approval_module": module.value,
                "min_amount": str(min_amount),
                "max_amount": None if max_amount is None else str(max_amount),
                "level_count": len(levels),
            },
        )
        return config

    def deactivate(self, name: str, module: ApprovalModule) -> bool:
        """Mark a configuration inactive.  Returns False if it does not exist."""
        config = self.session.execute(
            select(ApprovalConfigModel).where(
                ApprovalConfigModel.name == name,
                ApprovalConfigModel.module == ApprovalModule(module).value,
            )
        ).scalar_one_or_none()
        if config is None:
            return False
        config.is_active = False
        self.session.flush()
        logger.info("approval_config_deactivated", extra={"config_name": name})
        return True
