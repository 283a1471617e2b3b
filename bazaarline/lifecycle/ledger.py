from __future__ import annotations

from collections import defaultdict
from typing import Dict, List

from ..clock import Clock
from ..domain import (
    CustomerRole,
    LedgerEntryType,
    Order,
    OrderStatus,
    SettlementResult,
    SideEffectStatus,
    WalletEntry,
)
from ..errors import NotFoundError
from ..id_provider import IdProvider
from ..logging import ServiceLogger
from ..notifications import Notifier, notify_safely
from ..repositories import OrderRepository, WalletRepository


class ProfitSettlementLedger:
    """Posts and reverses the wallet entries tied to a delivered order.

    ``profits_distributed`` is flipped with a compare-and-set before any wallet
    is touched, so two concurrent callers can never both credit the same order.
    """

    def __init__(
        self,
        orders: OrderRepository,
        wallets: WalletRepository,
        notifier: Notifier,
        clock: Clock,
        ids: IdProvider,
        admin_user_id: str,
    ) -> None:
        self._orders = orders
        self._wallets = wallets
        self._notifier = notifier
        self._clock = clock
        self._ids = ids
        self._admin_user_id = admin_user_id
        self._log = ServiceLogger("ledger")

    def distribute(self, order_id: str) -> SettlementResult:
        order = self._require(order_id)
        if order.status != OrderStatus.DELIVERED:
            self._log.warning(
                "Cannot distribute profits for non-delivered order",
                order_id=order.id,
                order_number=order.order_number,
                status=order.status.value,
            )
            return SettlementResult(order_id=order.id, status=SideEffectStatus.SKIPPED, detail="order is not delivered")

        claimed = self._orders.claim_profits(
            order.id,
            expected=False,
            new=True,
            at=self._clock.now(),
            required_status=OrderStatus.DELIVERED,
        )
        if not claimed:
            current = self._require(order.id)
            if current.status != OrderStatus.DELIVERED:
                self._log.warning(
                    "Order left delivered before profits were claimed",
                    order_id=order.id,
                    order_number=order.order_number,
                    status=current.status.value,
                )
                return SettlementResult(
                    order_id=order.id, status=SideEffectStatus.SKIPPED, detail="order is not delivered"
                )
            self._log.warning("Profits already distributed for this order", order_id=order.id, order_number=order.order_number)
            return SettlementResult(order_id=order.id, status=SideEffectStatus.SKIPPED, detail="already distributed")

        self._log.info(
            "Starting profit distribution",
            order_id=order.id,
            order_number=order.order_number,
            marketer_profit=order.marketer_profit,
            admin_commission=order.commission,
            customer_role=order.customer_role.value,
        )
        posted: List[WalletEntry] = []
        try:
            if order.marketer_profit > 0 and order.customer_role == CustomerRole.MARKETER:
                posted.append(
                    self._post(
                        order,
                        order.customer_id,
                        LedgerEntryType.CREDIT,
                        order.marketer_profit,
                        f"Profit from order {order.order_number}",
                        f"order_profit_{order.id}",
                    )
                )
            if order.commission > 0:
                posted.append(
                    self._post(
                        order,
                        self._admin_user_id,
                        LedgerEntryType.CREDIT,
                        order.commission,
                        f"Admin commission from order {order.order_number}",
                        f"admin_profit_{order.id}",
                    )
                )
        except Exception as exc:
            self._log.error(
                "Profit distribution failed, rolling back",
                order_id=order.id,
                order_number=order.order_number,
                marketer_profit=order.marketer_profit,
                admin_commission=order.commission,
                posted=len(posted),
                error=exc,
            )
            self._rollback(order, posted)
            self._orders.claim_profits(order.id, expected=True, new=False, at=None)
            return SettlementResult(order_id=order.id, status=SideEffectStatus.FAILED, detail=str(exc))

        for entry in posted:
            notify_safely(
                self._notifier,
                self._log,
                entry.user_id,
                {
                    "title": "Profit added",
                    "message": f"{entry.amount:.2f} from order {order.order_number} was added to your wallet",
                    "type": "success",
                    "action_url": "/dashboard/wallet",
                    "metadata": {"order_id": order.id, "order_number": order.order_number, "profit": entry.amount},
                },
            )
        self._log.info("Profits distributed successfully", order_id=order.id, order_number=order.order_number)
        return SettlementResult(order_id=order.id, status=SideEffectStatus.OK, entries=posted)

    def reverse(self, order_id: str) -> SettlementResult:
        order = self._require(order_id)
        previous_at = order.profits_distributed_at
        if not self._orders.claim_profits(order.id, expected=True, new=False, at=None):
            self._log.debug("No profits to reverse", order_id=order.id, order_number=order.order_number)
            return SettlementResult(order_id=order.id, status=SideEffectStatus.SKIPPED, detail="profits not distributed")

        outstanding = self._net_credited(order.id)
        self._log.info(
            "Starting profit reversal",
            order_id=order.id,
            order_number=order.order_number,
            outstanding=dict(outstanding),
        )
        posted: List[WalletEntry] = []
        try:
            for user_id, amount in outstanding.items():
                balance = self._wallets.get(user_id).balance
                if balance < amount:
                    self._log.warning(
                        "Insufficient balance for profit reversal",
                        user_id=user_id,
                        balance=balance,
                        amount=amount,
                        order_number=order.order_number,
                    )
                kind = "admin_profit" if user_id == self._admin_user_id else "order_profit"
                posted.append(
                    self._post(
                        order,
                        user_id,
                        LedgerEntryType.DEBIT,
                        amount,
                        f"Profit reversed for cancelled/returned order {order.order_number}",
                        f"{kind}_reversal_{order.id}",
                    )
                )
        except Exception as exc:
            self._log.error(
                "Profit reversal failed; manual reconciliation required",
                order_id=order.id,
                order_number=order.order_number,
                outstanding=dict(outstanding),
                reversed=len(posted),
                error=exc,
            )
            # keep the order claimable so a retry only debits what is still outstanding
            self._orders.claim_profits(order.id, expected=False, new=True, at=previous_at)
            return SettlementResult(order_id=order.id, status=SideEffectStatus.FAILED, entries=posted, detail=str(exc))

        self._log.info("Profits reversed successfully", order_id=order.id, order_number=order.order_number)
        return SettlementResult(order_id=order.id, status=SideEffectStatus.OK, entries=posted)

    def _require(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if not order:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _net_credited(self, order_id: str) -> Dict[str, float]:
        totals: Dict[str, float] = defaultdict(float)
        for entry in self._wallets.entries_for_order(order_id):
            sign = 1 if entry.type == LedgerEntryType.CREDIT else -1
            totals[entry.user_id] += sign * entry.amount
        return {user_id: round(amount, 2) for user_id, amount in totals.items() if round(amount, 2) > 0}

    def _rollback(self, order: Order, posted: List[WalletEntry]) -> None:
        for entry in posted:
            try:
                self._post(
                    order,
                    entry.user_id,
                    LedgerEntryType.DEBIT,
                    entry.amount,
                    f"Profit rolled back for order {order.order_number} (distribution error)",
                    entry.reference.replace(f"_{order.id}", f"_rollback_{order.id}"),
                )
            except Exception as exc:
                self._log.error(
                    "Error during profit rollback",
                    order_id=order.id,
                    order_number=order.order_number,
                    user_id=entry.user_id,
                    amount=entry.amount,
                    error=exc,
                )

    def _post(
        self,
        order: Order,
        user_id: str,
        type_: LedgerEntryType,
        amount: float,
        reason: str,
        reference: str,
    ) -> WalletEntry:
        entry = WalletEntry(
            id=self._ids.new_id(),
            user_id=user_id,
            order_id=order.id,
            type=type_,
            amount=round(amount, 2),
            reason=reason,
            reference=reference,
            created_at=self._clock.now(),
        )
        wallet = self._wallets.post(entry)
        self._log.info(
            "Wallet entry posted",
            user_id=user_id,
            order_id=order.id,
            type=type_.value,
            amount=entry.amount,
            balance=wallet.balance,
        )
        return entry
