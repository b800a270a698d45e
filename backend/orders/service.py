"""Order service layer — placement, PR approval chain, shipment, returns.

Status pairs (legacy status / PR status):

  place                  Awaiting approval   / PENDING_SITE_ADMIN_APPROVAL
  site_admin_approve     Awaiting approval   / PENDING_COMPANY_ADMIN_APPROVAL   (company requires PO approval)
                         Awaiting fulfilment / SITE_ADMIN_APPROVED              (otherwise)
  company_admin_approve  Awaiting fulfilment / COMPANY_ADMIN_APPROVED
  reject                 Cancelled           / REJECTED                         (restores eligibility)
  cancel                 Cancelled           / CANCELLED                        (restores eligibility)
  dispatch               Dispatched          / IN_SHIPMENT
  deliver                Dispatched          / PARTIALLY_DELIVERED
                         Delivered           / FULLY_DELIVERED
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backend.catalog.models import Product, Subcategory
from backend.common.audit import create_audit_entry
from backend.common.constants import (
    ItemShipmentStatus,
    LedgerReason,
    OrderStatus,
    PRStatus,
    ReturnStatus,
)
from backend.common.exceptions import (
    InsufficientEligibilityException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from backend.core.models import Employee
from backend.eligibility.snapshot import remaining
from backend.orders.ledger import (
    consume_for_order,
    requested_by_category,
    resolve_product_category,
    restore_for_order,
    restore_for_return,
)
from backend.orders.models import Order, OrderItem, ReturnRequest
from backend.orders.schemas import (
    OrderCreate,
    OrderDeliverRequest,
    OrderOut,
    ReturnCreate,
    ReturnRequestOut,
)

logger = logging.getLogger(__name__)

_PENDING_APPROVAL = (
    PRStatus.pending_site_admin_approval,
    PRStatus.pending_company_admin_approval,
)
_CANCELLABLE = (OrderStatus.awaiting_approval, OrderStatus.awaiting_fulfilment)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# OrderService
# ═════════════════════════════════════════════════════════════════════


class OrderService:
    """Async order operations driving the consumption ledger."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(
                selectinload(Order.items).selectinload(OrderItem.returns),
                selectinload(Order.company),
            )
        )
        order = result.scalars().first()
        if order is None:
            raise NotFoundException("Order", order_id)
        return order

    @staticmethod
    async def _get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def _audit_transition(
        db: AsyncSession,
        order: Order,
        action: str,
        old: tuple[OrderStatus, PRStatus],
        actor: Optional[str],
    ) -> None:
        await create_audit_entry(
            db,
            action=f"order.{action}",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            old_values={"status": old[0].value, "pr_status": old[1].value},
            new_values={"status": order.status.value, "pr_status": order.pr_status.value},
        )
        logger.info(
            "Order %s %s: %s/%s -> %s/%s",
            order.id, action, old[0].value, old[1].value,
            order.status.value, order.pr_status.value,
        )

    # ─────────────────────────────────────────────────────────────────
    # Placement
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def place_order(
        db: AsyncSession,
        body: OrderCreate,
        actor: Optional[str] = None,
    ) -> OrderOut:
        """Validate, create and consume eligibility.

        Validates:
          - Employee exists, is active and belongs to a company
          - Every product exists, is active and is visible to the company
          - Requested quantity per category ≤ remaining (non-replacement only)
        """
        employee = await OrderService._get_employee(db, body.employee_id)
        if not employee.is_active:
            raise ValidationException({"employee_id": ["Employee is not active."]})
        if employee.company_id is None:
            raise ValidationException({"employee_id": ["Employee has no company."]})

        product_ids = {item.product_id for item in body.items}
        products = {
            p.id: p
            for p in (
                await db.execute(
                    select(Product)
                    .where(Product.id.in_(product_ids))
                    .options(
                        selectinload(Product.category),
                        selectinload(Product.subcategory)
                        .selectinload(Subcategory.parent_category),
                    )
                )
            ).scalars().all()
        }

        errors: dict[str, list[str]] = {}
        for idx, item in enumerate(body.items):
            product = products.get(item.product_id)
            if product is None:
                raise NotFoundException("Product", item.product_id)
            if not product.is_active:
                errors.setdefault(f"items.{idx}.product_id", []).append("Product is inactive.")
            elif product.company_id is not None and product.company_id != employee.company_id:
                errors.setdefault(f"items.{idx}.product_id", []).append(
                    "Product is not available to this company."
                )
        if errors:
            raise ValidationException(errors)

        order = Order(
            employee_id=employee.id,
            company_id=employee.company_id,
            status=OrderStatus.awaiting_approval,
            pr_status=PRStatus.pending_site_admin_approval,
            is_replacement=body.is_replacement,
            items=[
                OrderItem(
                    position=idx,
                    product_id=item.product_id,
                    category=resolve_product_category(products[item.product_id]) or None,
                    quantity=item.quantity,
                    dispatched_quantity=0,
                    delivered_quantity=0,
                    shipment_status=ItemShipmentStatus.pending,
                    returns=[],
                )
                for idx, item in enumerate(body.items)
            ],
        )

        if not order.is_replacement:
            totals, _ = requested_by_category(order)
            shortfalls = {
                cat: (qty, remaining(employee, cat))
                for cat, qty in totals.items()
                if qty > remaining(employee, cat)
            }
            if shortfalls:
                raise InsufficientEligibilityException(shortfalls)

        db.add(order)
        await db.flush()

        consumption = consume_for_order(db, employee, order)
        await create_audit_entry(
            db,
            action="order.place",
            entity_type="order",
            entity_id=order.id,
            actor=actor,
            new_values={
                "employee_id": str(employee.id),
                "is_replacement": order.is_replacement,
                "consumed": {c.category: -c.delta for c in consumption.changes},
            },
        )
        await db.flush()
        await db.refresh(order, attribute_names=["created_at", "updated_at"])

        out = OrderOut.model_validate(order)
        out.consumption_errors = consumption.errors
        return out

    @staticmethod
    async def get_order(db: AsyncSession, order_id: uuid.UUID) -> OrderOut:
        return OrderOut.model_validate(await OrderService._get_order(db, order_id))

    # ─────────────────────────────────────────────────────────────────
    # Approval chain
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def site_admin_approve(
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> OrderOut:
        order = await OrderService._get_order(db, order_id)
        if order.pr_status != PRStatus.pending_site_admin_approval:
            raise InvalidTransitionException("order", order.pr_status.value, "site-admin approve")

        old = (order.status, order.pr_status)
        now = _now()
        order.site_admin_approved_at = now
        if order.company.require_company_admin_po_approval:
            order.pr_status = PRStatus.pending_company_admin_approval
        else:
            order.pr_status = PRStatus.site_admin_approved
            order.status = OrderStatus.awaiting_fulfilment
        order.updated_at = now
        await db.flush()

        await OrderService._audit_transition(db, order, "site_admin_approve", old, actor)
        return OrderOut.model_validate(order)

    @staticmethod
    async def company_admin_approve(
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> OrderOut:
        order = await OrderService._get_order(db, order_id)
        if order.pr_status != PRStatus.pending_company_admin_approval:
            raise InvalidTransitionException(
                "order", order.pr_status.value, "company-admin approve",
            )

        old = (order.status, order.pr_status)
        now = _now()
        order.company_admin_approved_at = now
        order.pr_status = PRStatus.company_admin_approved
        order.status = OrderStatus.awaiting_fulfilment
        order.updated_at = now
        await db.flush()

        await OrderService._audit_transition(db, order, "company_admin_approve", old, actor)
        return OrderOut.model_validate(order)

    @staticmethod
    async def reject(
        db: AsyncSession,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> OrderOut:
        """Reject a pending PR and give the consumed eligibility back."""
        order = await OrderService._get_order(db, order_id)
        if order.pr_status not in _PENDING_APPROVAL:
            raise InvalidTransitionException("order", order.pr_status.value, "reject")

        old = (order.status, order.pr_status)
        order.pr_status = PRStatus.rejected
        order.status = OrderStatus.cancelled
        order.rejection_reason = reason
        order.updated_at = _now()

        employee = await OrderService._get_employee(db, order.employee_id)
        await restore_for_order(db, employee, order, LedgerReason.order_rejected)
        await db.flush()

        await OrderService._audit_transition(db, order, "reject", old, actor)
        return OrderOut.model_validate(order)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> OrderOut:
        """Cancel before dispatch; restores eligibility."""
        order = await OrderService._get_order(db, order_id)
        if order.status not in _CANCELLABLE:
            raise InvalidTransitionException("order", order.status.value, "cancel")

        old = (order.status, order.pr_status)
        order.status = OrderStatus.cancelled
        order.pr_status = PRStatus.cancelled
        order.updated_at = _now()

        employee = await OrderService._get_employee(db, order.employee_id)
        await restore_for_order(db, employee, order, LedgerReason.order_cancelled)
        await db.flush()

        await OrderService._audit_transition(db, order, "cancel", old, actor)
        return OrderOut.model_validate(order)

    # ─────────────────────────────────────────────────────────────────
    # Shipment
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def dispatch(
        db: AsyncSession,
        order_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> OrderOut:
        order = await OrderService._get_order(db, order_id)
        if order.status != OrderStatus.awaiting_fulfilment:
            raise InvalidTransitionException("order", order.status.value, "dispatch")

        old = (order.status, order.pr_status)
        now = _now()
        for item in order.items:
            item.dispatched_quantity = item.quantity
            item.shipment_status = ItemShipmentStatus.dispatched
        order.status = OrderStatus.dispatched
        order.pr_status = PRStatus.in_shipment
        order.dispatched_at = now
        order.updated_at = now
        await db.flush()

        await OrderService._audit_transition(db, order, "dispatch", old, actor)
        return OrderOut.model_validate(order)

    @staticmethod
    async def deliver(
        db: AsyncSession,
        order_id: uuid.UUID,
        body: Optional[OrderDeliverRequest] = None,
        actor: Optional[str] = None,
    ) -> OrderOut:
        """Record deliveries; the order is Delivered once every item is."""
        order = await OrderService._get_order(db, order_id)
        if order.status != OrderStatus.dispatched:
            raise InvalidTransitionException("order", order.status.value, "deliver")

        items_by_id = {item.id: item for item in order.items}
        if body is None or body.items is None:
            deliveries = {item.id: item.dispatched_quantity for item in order.items}
        else:
            deliveries = {}
            for idx, d in enumerate(body.items):
                if d.item_id not in items_by_id:
                    raise ValidationException(
                        {f"items.{idx}.item_id": ["Item does not belong to this order."]}
                    )
                deliveries[d.item_id] = deliveries.get(d.item_id, 0) + d.quantity

        old = (order.status, order.pr_status)
        for item_id, qty in deliveries.items():
            item = items_by_id[item_id]
            item.delivered_quantity = min(
                item.dispatched_quantity, (item.delivered_quantity or 0) + qty,
            )
            if item.delivered_quantity >= item.quantity:
                item.shipment_status = ItemShipmentStatus.delivered

        now = _now()
        if all(item.delivered_quantity >= item.quantity for item in order.items):
            order.status = OrderStatus.delivered
            order.pr_status = PRStatus.fully_delivered
            order.delivered_at = now
        else:
            order.pr_status = PRStatus.partially_delivered
        order.updated_at = now
        await db.flush()

        await OrderService._audit_transition(db, order, "deliver", old, actor)
        return OrderOut.model_validate(order)

    # ─────────────────────────────────────────────────────────────────
    # Returns
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def request_return(
        db: AsyncSession,
        order_id: uuid.UUID,
        item_id: uuid.UUID,
        body: ReturnCreate,
        actor: Optional[str] = None,
    ) -> ReturnRequestOut:
        order = await OrderService._get_order(db, order_id)
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise NotFoundException("OrderItem", item_id)

        returnable = (item.delivered_quantity or 0) - item.returned_quantity
        if returnable <= 0:
            raise ValidationException({"item_id": ["No delivered units left to return."]})
        if body.quantity > returnable:
            raise ValidationException(
                {"quantity": [f"At most {returnable} unit(s) can be returned."]}
            )

        return_request = ReturnRequest(
            order_id=order.id,
            order_item_id=item.id,
            quantity=body.quantity,
            reason=body.reason,
            status=ReturnStatus.requested,
        )
        item.returns.append(return_request)
        await db.flush()

        await create_audit_entry(
            db,
            action="return.request",
            entity_type="return_request",
            entity_id=return_request.id,
            actor=actor,
            new_values={"order_item_id": str(item.id), "quantity": body.quantity},
        )
        await db.refresh(return_request, attribute_names=["created_at"])
        return ReturnRequestOut.model_validate(return_request)

    @staticmethod
    async def _get_return(db: AsyncSession, return_id: uuid.UUID) -> ReturnRequest:
        result = await db.execute(
            select(ReturnRequest)
            .where(ReturnRequest.id == return_id)
            .options(selectinload(ReturnRequest.order_item).selectinload(OrderItem.order))
        )
        return_request = result.scalars().first()
        if return_request is None:
            raise NotFoundException("ReturnRequest", return_id)
        return return_request

    @staticmethod
    async def approve_return(
        db: AsyncSession,
        return_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> ReturnRequestOut:
        """Approve a return; replacement orders never consumed, so nothing is restored."""
        return_request = await OrderService._get_return(db, return_id)
        if return_request.status != ReturnStatus.requested:
            raise InvalidTransitionException(
                "return request", return_request.status.value, "approve",
            )

        return_request.status = ReturnStatus.approved
        return_request.resolved_at = _now()

        order = return_request.order_item.order
        if not order.is_replacement:
            employee = await OrderService._get_employee(db, order.employee_id)
            restore_for_return(
                db, employee, return_request,
                return_request.order_item.category, order_id=order.id,
            )
        await db.flush()

        await create_audit_entry(
            db,
            action="return.approve",
            entity_type="return_request",
            entity_id=return_request.id,
            actor=actor,
            old_values={"status": ReturnStatus.requested.value},
            new_values={"status": ReturnStatus.approved.value},
        )
        return ReturnRequestOut.model_validate(return_request)

    @staticmethod
    async def reject_return(
        db: AsyncSession,
        return_id: uuid.UUID,
        actor: Optional[str] = None,
    ) -> ReturnRequestOut:
        return_request = await OrderService._get_return(db, return_id)
        if return_request.status != ReturnStatus.requested:
            raise InvalidTransitionException(
                "return request", return_request.status.value, "reject",
            )

        return_request.status = ReturnStatus.rejected
        return_request.resolved_at = _now()
        await db.flush()

        await create_audit_entry(
            db,
            action="return.reject",
            entity_type="return_request",
            entity_id=return_request.id,
            actor=actor,
            old_values={"status": ReturnStatus.requested.value},
            new_values={"status": ReturnStatus.rejected.value},
        )
        return ReturnRequestOut.model_validate(return_request)
