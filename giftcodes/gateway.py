"""
Confirmation gateway: every state change of an order goes through here.

Two operator entry points drive the same transition code:

* ``confirm_or_reject``: direct call from the admin panel; the caller's
  profile must have role ``admin``.
* ``token_confirm_or_reject``: the confirm/reject links sent to the
  operator chat. The 32-character token is the only credential; it is
  cleared by the same conditional update that applies the transition, so a
  replayed link can never act twice.

Buyers create purchases, reveal their code and cancel pending purchases.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

from .errors import (
    Conflict, Forbidden, InternalError, NotFoundError, OutOfStock,
    ValidationError,
)
from .fulfillment import FulfillmentCoordinator, conflict_for
from .helpers import format_amount, is_blank, new_confirmation_token, new_id
from .helpers import now_ts
from .model.ports import InventoryStore, OrderStore, ProfileDirectory
from .model.records import OrderRecord, ProfileRecord
from .model.states import (
    ACTION_CONFIRM, ACTIONS, ORDER_COMPLETED, ROLE_ADMIN, ensure_pending,
    is_pending,
)
from .notify import Notifier
from .storage import ProofStorage, proof_key

logger = logging.getLogger(__name__)

DEFAULT_REJECT_REASON = "Payment not verified"
TOKEN_REJECT_REASON = "Rejected by admin via Telegram"
TOKEN_ACTOR = "telegram-link"
MIN_CANCEL_REASON = 5
# orders.amount is a 32-bit INTEGER column
MAX_AMOUNT = 2**31 - 1


@dataclass
class ProofFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class TransitionResult:
    order: OrderRecord
    action: str
    product_name: str = ""
    item_id: Optional[str] = None


@dataclass
class RevealResult:
    code: str
    already_revealed: bool


def parse_amount(value: Any) -> int:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number") from None
    if not math.isfinite(amount) or amount <= 0 or not amount.is_integer():
        raise ValidationError("amount must be a positive whole number")
    if amount > MAX_AMOUNT:
        raise ValidationError("amount is too large",
                              {"max_amount": MAX_AMOUNT})
    return int(amount)


def absolute_url(base: str, url: Optional[str]) -> Optional[str]:
    # storage may hand back a path; chat clients only fetch absolute links
    if not url or urlparse(url).scheme:
        return url
    return f"{base.rstrip('/')}/{url.lstrip('/')}"


class ConfirmationGateway:
    def __init__(
        self,
        *,
        inventory: InventoryStore,
        orders: OrderStore,
        profiles: ProfileDirectory,
        storage: ProofStorage,
        notifier: Notifier,
        coordinator: Optional[FulfillmentCoordinator] = None,
        min_stock: int = 1,
    ) -> None:
        self.inventory = inventory
        self.orders = orders
        self.profiles = profiles
        self.storage = storage
        self.notifier = notifier
        self.coordinator = coordinator or FulfillmentCoordinator(
            inventory, orders
        )
        self.min_stock = max(1, int(min_stock))

    # ------------------------------------------------------------------
    # buyer: submit purchase
    # ------------------------------------------------------------------
    async def create_purchase(
        self,
        product_id: str,
        amount: Any,
        buyer_id: str,
        depositor_name: str,
        proof: Optional[ProofFile],
        base_url: str,
    ) -> OrderRecord:
        missing = [
            name for name, value in (
                ("product_id", product_id),
                ("amount", amount),
                ("user_id", buyer_id),
                ("depositor_name", depositor_name),
            ) if is_blank(value)
        ]
        if proof is None or not proof.data:
            missing.append("payment_proof")
        if missing:
            raise ValidationError("missing required fields",
                                  {"missing": missing})
        amount = parse_amount(amount)

        buyer = await self.profiles.get_profile(buyer_id)
        if buyer is None:
            raise NotFoundError("user not found", {"user_id": buyer_id})
        product = await self.inventory.get_product(product_id)
        if product is None or not product.is_active:
            raise NotFoundError("product not found",
                                {"product_id": product_id})

        # read-only check; the code is claimed on confirmation
        available = await self.inventory.count_available(product_id)
        if available < self.min_stock:
            raise OutOfStock("no stock available", product_id=product_id)

        url = await self.storage.upload(
            proof_key(buyer_id, proof.filename), proof.data,
            content_type=proof.content_type,
        )

        order = OrderRecord(
            id=new_id(),
            buyer_id=buyer_id,
            product_id=product_id,
            amount=amount,
            created_at=now_ts(),
            depositor_name=depositor_name.strip(),
            payment_proof_url=url,
            confirmation_token=new_confirmation_token(),
        )
        await self.orders.create(order)
        logger.info("[order=%s] created buyer=%s product=%s amount=%d",
                    order.id, buyer_id, product_id, amount)

        await self._notify_operator(order, product.name,
                                    buyer.display_name, base_url)
        return order

    async def _notify_operator(self, order: OrderRecord, product_name: str,
                               buyer_name: str, base_url: str) -> None:
        base = base_url.rstrip("/")

        def link(action: str) -> str:
            query = urlencode({"token": order.confirmation_token,
                               "action": action})
            return f"{base}/api/telegram-confirm?{query}"

        message = (
            "🔔 *NEW PENDING PURCHASE*\n\n"
            f"📦 *Product:* {product_name}\n"
            f"💰 *Amount:* ${format_amount(order.amount)}\n"
            f"👤 *Buyer:* {buyer_name}\n"
            f"💳 *Depositor:* {order.depositor_name}\n\n"
            "📸 Check the payment proof and decide:"
        )
        try:
            ok = await self.notifier.notify(
                message,
                image_url=absolute_url(base, order.payment_proof_url),
                confirm_url=link("confirm"),
                reject_url=link("reject"),
            )
        except Exception:
            logger.exception("[order=%s] operator notification failed",
                             order.id)
            return
        if not ok:
            logger.warning("[order=%s] operator notification not delivered",
                           order.id)

    # ------------------------------------------------------------------
    # operator: direct and token entry points
    # ------------------------------------------------------------------
    async def require_admin(self, admin_id: Optional[str]) -> ProfileRecord:
        admin = None
        if not is_blank(admin_id):
            admin = await self.profiles.get_profile(admin_id)
        if admin is None or admin.role != ROLE_ADMIN:
            raise Forbidden("administrator permissions required")
        return admin

    async def confirm_or_reject(
        self,
        order_id: str,
        action: str,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        if is_blank(order_id) or is_blank(action) or is_blank(admin_id):
            raise ValidationError("missing required fields")
        if action not in ACTIONS:
            raise ValidationError("invalid action", {"action": action})

        admin = await self.require_admin(admin_id)

        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundError("order not found", {"order_id": order_id})

        reason = reason.strip() if reason and reason.strip() else None
        return await self._apply(order, action, admin.id,
                                 reason or DEFAULT_REJECT_REASON)

    async def token_confirm_or_reject(self, token: str,
                                      action: str) -> TransitionResult:
        if is_blank(token) or is_blank(action):
            raise ValidationError("invalid parameters")
        if action not in ACTIONS:
            raise ValidationError("invalid action", {"action": action})

        order = await self.orders.get_by_token(token)
        if order is None:
            raise Conflict("invalid or consumed token")
        return await self._apply(order, action, TOKEN_ACTOR,
                                 TOKEN_REJECT_REASON, token=token)

    async def _apply(self, order: OrderRecord, action: str, actor: str,
                     reason: str,
                     token: Optional[str] = None) -> TransitionResult:
        ensure_pending(order)

        item_id = None
        if action == ACTION_CONFIRM:
            item = await self.coordinator.confirm(order, actor, token=token)
            item_id = item.id
        else:
            applied = await self.orders.reject(order.id, reason, actor,
                                               token=token)
            if not applied:
                raise conflict_for(await self.orders.get(order.id))
            logger.info("[order=%s] rejected by=%s", order.id, actor)

        updated = await self.orders.get(order.id) or order
        product = await self.inventory.get_product(order.product_id)
        return TransitionResult(
            order=updated,
            action=action,
            product_name=product.name if product else "",
            item_id=item_id,
        )

    # ------------------------------------------------------------------
    # buyer: reveal / cancel
    # ------------------------------------------------------------------
    async def get_order(self, order_id: str, user_id: Optional[str] = None,
                        admin_id: Optional[str] = None) -> OrderRecord:
        """Order visible to its buyer, or to any admin."""
        if is_blank(order_id):
            raise ValidationError("order id is required")
        if not is_blank(admin_id):
            await self.require_admin(admin_id)
            order = await self.orders.get(order_id)
        elif not is_blank(user_id):
            order = await self.orders.get_for_buyer(order_id, user_id)
        else:
            raise ValidationError("user id is required")
        if order is None:
            raise NotFoundError("order not found", {"order_id": order_id})
        return order

    async def reveal_code(self, order_id: str,
                          buyer_id: str) -> RevealResult:
        if is_blank(order_id) or is_blank(buyer_id):
            raise ValidationError("order id and user id are required")
        order = await self.orders.get_for_buyer(order_id, buyer_id)
        if order is None:
            raise NotFoundError("order not found", {"order_id": order_id})
        if order.status != ORDER_COMPLETED or not order.inventory_item_id:
            raise Conflict("the code is available once the payment is "
                           "confirmed", current_status=order.status)

        item = await self.inventory.get_item(order.inventory_item_id)
        if item is None:
            logger.error("[order=%s] bound item %s is missing", order.id,
                         order.inventory_item_id)
            raise InternalError("could not load the code")

        if order.code_revealed:
            return RevealResult(code=item.code, already_revealed=True)
        flipped = await self.orders.mark_revealed(order.id, buyer_id)
        if flipped:
            logger.info("[order=%s] code revealed", order.id)
        return RevealResult(code=item.code, already_revealed=not flipped)

    async def cancel_purchase(self, order_id: str, buyer_id: str,
                              reason: Optional[str]) -> OrderRecord:
        if is_blank(order_id) or is_blank(buyer_id):
            raise ValidationError("order id and user id are required")
        reason = (reason or "").strip()
        if len(reason) < MIN_CANCEL_REASON:
            raise ValidationError(
                "a cancellation reason of at least "
                f"{MIN_CANCEL_REASON} characters is required",
                {"min_length": MIN_CANCEL_REASON},
            )

        order = await self.orders.get_for_buyer(order_id, buyer_id)
        if order is None:
            raise NotFoundError("order not found", {"order_id": order_id})
        if order.code_revealed:
            raise Conflict("the code was already revealed; revealed codes "
                           "are not refundable", current_status=order.status)
        if not is_pending(order):
            raise Conflict("this purchase can no longer be cancelled",
                           current_status=order.status)

        bound = order.inventory_item_id
        applied = await self.orders.cancel(
            order.id, buyer_id, f"Cancelled by buyer: {reason}"
        )
        if not applied:
            raise conflict_for(await self.orders.get(order.id))
        if bound:
            released = await self.inventory.release(bound)
            logger.warning("[order=%s] cancelled with bound item=%s "
                           "released=%s", order.id, bound, released)
        logger.info("[order=%s] cancelled by buyer", order.id)
        return await self.orders.get(order.id) or order
