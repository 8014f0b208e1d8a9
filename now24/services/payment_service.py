"""
Payment service: charges and gateway status reconciliation.

Every status report, whether it comes from the synchronous charge response,
a webhook or a manual reconcile, goes through `apply_gateway_status`, which
is idempotent and never moves a transaction or an order backwards.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from now24.models import (
    AppUser, Order, OrderStatus, PaymentCard, PaymentMethod, PaymentTransaction, TransactionStatus,
    TRANSACTION_RANK, OPEN_TRANSACTION_STATUSES, map_gateway_status
)
from now24.exceptions import (
    Now24Error, OrderCannotBePaidError, InvalidPaymentMethodError,
    PaymentMethodMismatchError, CardRequiredError, CardNotFoundError, CardTypeMismatchError,
    CardDataMissingError, PaymentGatewayError, PaymentGatewayUnavailableError, TransactionNotFoundError
)
from now24.services.notification_service import NotificationKind, dispatch_notification
from now24.services.order_service import apply_order_status, lock_order
from now24.blueprints.metrics import payment_transitions_total
from now24.utils.formatters import money_br

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT)
REFUNDABLE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY)
GATEWAY_ACTOR = 'payment_gateway'


class PaymentService:
    """Charges orders through an injected PaymentGateway and applies its answers."""

    def __init__(self, session: Session, gateway=None, notifier=None):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier

    # =====================================================
    # CHARGE
    # =====================================================

    def charge(
        self,
        user_id: int,
        order_id: int,
        payment_method: str,
        payer: Optional[Dict[str, Any]] = None,
        card_id: Optional[int] = None,
        installments: int = 1,
        now: Optional[datetime] = None,
    ) -> PaymentTransaction:
        """
        Charge an order.

        The attempt is recorded (with its idempotency key) and committed
        before the gateway is called, and no row lock is held during the
        call. A retry after a timeout reuses the same attempt and key, so
        Mercado Pago answers with the original payment instead of charging
        twice.

        Raises:
            PaymentGatewayUnavailableError: order left in awaiting_payment, retry later
            PaymentGatewayError: gateway refused the request
        """
        now = now or datetime.utcnow()
        txn_id, order_snapshot, charge_args = self._prepare_attempt(
            user_id, order_id, payment_method, payer or {}, card_id, installments, now
        )

        if charge_args is None:
            # Nothing to collect (fully discounted order)
            return self.apply_gateway_status(None, 'approved', {'internal': True}, now=now, transaction_id=txn_id)

        try:
            result = self.gateway.charge(**charge_args)
        except PaymentGatewayUnavailableError:
            logger.warning(f"[PAYMENT] Gateway unavailable for order {order_snapshot['order_number']}, "
                           f"attempt key {charge_args['idempotency_key']}")
            self._mark_awaiting_payment(order_snapshot['id'], now)
            raise
        except PaymentGatewayError as e:
            self._mark_refused(txn_id, order_snapshot['id'], e, now)
            raise

        logger.info(f"[PAYMENT] Order {order_snapshot['order_number']} charged: "
                    f"gateway_id={result.gateway_transaction_id} status={result.status}")
        return self.apply_gateway_status(
            result.gateway_transaction_id, result.status, result.raw, now=now, transaction_id=txn_id
        )

    def _prepare_attempt(self, user_id, order_id, payment_method, payer, card_id, installments, now):
        """Validate, then create or reuse the attempt row. Commits."""
        try:
            order = lock_order(self.session, order_id, user_id)
            if order.status not in PAYABLE_STATUSES:
                raise OrderCannotBePaidError(order.status.value)

            try:
                method = PaymentMethod(payment_method)
            except ValueError:
                raise InvalidPaymentMethodError(payment_method)
            if method != order.payment_method:
                raise PaymentMethodMismatchError()

            user = self.session.get(AppUser, user_id)
            card = None
            if method.is_card:
                card_id = card_id or order.card_id
                if not card_id:
                    raise CardRequiredError()
                card = self.session.query(PaymentCard).filter_by(id=card_id, user_id=user_id, active=True).first()
                if not card:
                    raise CardNotFoundError()
                if card.card_type != method.value:
                    raise CardTypeMismatchError()
                if not card.gateway_card_id:
                    raise CardDataMissingError()

            txn = self._open_attempt(order, method, card, installments, now)
            order_snapshot = {'id': order.id, 'order_number': order.order_number}
            charge_args = None if order.total == 0 else self._charge_args(order, method, txn, user, payer, card)
            txn_id = txn.id
            self.session.commit()
        except Now24Error as e:
            self.session.rollback()
            raise e
        except Exception:
            self.session.rollback()
            raise

        return txn_id, order_snapshot, charge_args

    def _charge_args(self, order, method, txn, user, payer, card) -> Dict[str, Any]:
        return {
            'amount': order.total,
            'payment_method': method.value,
            'idempotency_key': txn.idempotency_key,
            'description': f"Pedido {order.order_number}",
            'payer': self._build_payer(user, payer),
            'external_reference': str(order.id),
            'card': {
                'gateway_card_id': card.gateway_card_id,
                'brand': card.brand,
                'customer_id': user.gateway_customer_id,
            } if card else None,
            'installments': txn.installments,
            'metadata': {'order_id': order.id, 'user_id': order.user_id},
        }

    def _open_attempt(self, order: Order, method: PaymentMethod, card, installments, now) -> PaymentTransaction:
        """Reuse an attempt the gateway never answered, or start a new one."""
        unanswered = self.session.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order.id,
            PaymentTransaction.gateway_transaction_id.is_(None),
            PaymentTransaction.status == TransactionStatus.PENDING,
        ).order_by(PaymentTransaction.id.desc()).first()
        if unanswered is not None:
            logger.info(f"[PAYMENT] Retrying unanswered attempt {unanswered.idempotency_key}")
            return unanswered

        attempt = self.session.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order.id
        ).count() + 1
        txn = PaymentTransaction(
            order_id=order.id,
            payment_method=method,
            card_id=card.id if card else None,
            amount=order.total,
            installments=int(installments or 1) if method == PaymentMethod.CREDIT_CARD else 1,
            status=TransactionStatus.PENDING,
            idempotency_key=f"order-{order.id}-attempt-{attempt}",
            created_at=now,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    @staticmethod
    def _build_payer(user: AppUser, payer: Dict[str, Any]) -> Dict[str, Any]:
        identification = payer.get('identification')
        if not identification and user.cpf:
            identification = {'type': 'CPF', 'number': user.cpf}
        return {
            'email': payer.get('email') or user.email,
            'first_name': payer.get('first_name') or user.first_name,
            'last_name': payer.get('last_name') or user.last_name,
            'identification': identification or {},
        }

    def _mark_awaiting_payment(self, order_id: int, now: datetime) -> None:
        """Gateway did not answer: keep the order resumable, never confirmed."""
        try:
            order = lock_order(self.session, order_id)
            changed = False
            if order.status == OrderStatus.PENDING:
                changed = apply_order_status(
                    self.session, order, OrderStatus.AWAITING_PAYMENT, GATEWAY_ACTOR,
                    'Gateway indisponível, aguardando nova tentativa', now,
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if changed:
            self._notify_status(order)

    def _mark_refused(self, transaction_id: int, order_id: int, error: PaymentGatewayError,
                      now: datetime) -> None:
        """Refusal settles the attempt; an order left awaiting payment goes back to pending."""
        try:
            txn = self._lock_transaction_by_id(transaction_id)
            order = lock_order(self.session, order_id)
            txn.status = TransactionStatus.REJECTED
            txn.gateway_response = {'error': error.message, **(error.payload or {})}
            txn.processed_at = now
            changed = self._apply_order_effect(order, TransactionStatus.REJECTED, now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        payment_transitions_total.labels(status=TransactionStatus.REJECTED.value).inc()
        if changed:
            self._notify_status(order)

    # =====================================================
    # RECONCILIATION
    # =====================================================

    def apply_gateway_status(
        self,
        gateway_transaction_id: Optional[str],
        raw_status: str,
        raw_payload: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
        transaction_id: Optional[int] = None,
    ) -> Optional[PaymentTransaction]:
        """
        Apply a gateway status to a transaction and its order.

        Idempotent: re-applying the status a transaction already holds writes
        nothing. Settled transactions never return to pending/processing and
        refunds/chargebacks are never undone. When the gateway id is unknown
        the transaction is adopted through the payload's external_reference.

        Returns:
            The transaction, or None when no order could be matched.

        Raises:
            UnknownGatewayStatusError: raw_status outside the Mercado Pago vocabulary
        """
        now = now or datetime.utcnow()
        raw_payload = raw_payload or {}
        status = map_gateway_status(raw_status)

        try:
            txn = None
            if gateway_transaction_id:
                txn = self._lock_transaction_by_gateway_id(gateway_transaction_id)
            if txn is None and transaction_id is not None:
                txn = self._lock_transaction_by_id(transaction_id)
                if gateway_transaction_id:
                    txn.gateway_transaction_id = gateway_transaction_id
            if txn is None:
                txn = self._adopt_transaction(gateway_transaction_id, raw_payload, now)
            if txn is None:
                logger.warning(f"[PAYMENT] No order matches gateway payment {gateway_transaction_id}")
                self.session.rollback()
                return None

            order = lock_order(self.session, txn.order_id)
            order_changed = self._transition(txn, order, status, raw_status, raw_payload, now)
            self.session.commit()
        except Now24Error as e:
            self.session.rollback()
            raise e
        except Exception:
            self.session.rollback()
            raise

        if order_changed:
            self._notify_status(order)
        return txn

    def _transition(self, txn: PaymentTransaction, order: Order, status: TransactionStatus,
                    raw_status: str, raw_payload: Dict[str, Any], now: datetime) -> bool:
        """Move the transaction, then derive the order effect. Returns True if the order changed."""
        current = txn.status
        first_report = txn.gateway_status is None

        if status == current and not first_report:
            logger.info(f"[PAYMENT] Txn {txn.id} already {status.value}, nothing to do")
            return False
        if status != current and not self._can_move(current, status):
            logger.warning(f"[PAYMENT] Ignoring {current.value} -> {status.value} for txn {txn.id}")
            return False

        txn.status = status
        txn.gateway_status = str(raw_status)
        txn.gateway_status_detail = raw_payload.get('status_detail')
        txn.authorization_code = raw_payload.get('authorization_code') or txn.authorization_code
        txn.gateway_response = raw_payload
        txn.updated_at = now
        if TRANSACTION_RANK[status] > 0:
            txn.processed_at = now
        payment_transitions_total.labels(status=status.value).inc()
        logger.info(f"[PAYMENT] Txn {txn.id} ({txn.gateway_transaction_id}): {current.value} -> {status.value}")

        return self._apply_order_effect(order, status, now)

    @staticmethod
    def _can_move(current: TransactionStatus, new: TransactionStatus) -> bool:
        current_rank, new_rank = TRANSACTION_RANK[current], TRANSACTION_RANK[new]
        # pending <-> processing is the only sideways move
        return new_rank > current_rank or (new_rank == current_rank == 0)

    def _apply_order_effect(self, order: Order, status: TransactionStatus, now: datetime) -> bool:
        if status == TransactionStatus.APPROVED:
            if order.status in PAYABLE_STATUSES:
                return apply_order_status(self.session, order, OrderStatus.CONFIRMED, GATEWAY_ACTOR,
                                          'Pagamento aprovado', now)
            if order.status == OrderStatus.CANCELLED:
                logger.warning(f"[PAYMENT] Approved payment for cancelled order {order.order_number}; refund required")
            return False

        if status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING):
            if order.status == OrderStatus.PENDING:
                return apply_order_status(self.session, order, OrderStatus.AWAITING_PAYMENT, GATEWAY_ACTOR,
                                          'Pagamento em processamento', now)
            return False

        if status in (TransactionStatus.REJECTED, TransactionStatus.CANCELLED):
            if order.status == OrderStatus.AWAITING_PAYMENT:
                return apply_order_status(self.session, order, OrderStatus.PENDING, GATEWAY_ACTOR,
                                          f'Pagamento {status.value}', now)
            return False

        # refunded / chargeback
        if order.status in REFUNDABLE_STATUSES:
            return apply_order_status(self.session, order, OrderStatus.REFUNDED, GATEWAY_ACTOR,
                                      f'Pagamento {status.value}', now)
        return False

    def _adopt_transaction(self, gateway_transaction_id: Optional[str], raw_payload: Dict[str, Any],
                           now: datetime) -> Optional[PaymentTransaction]:
        """Webhook arrived before the charge response was recorded."""
        reference = raw_payload.get('external_reference')
        if not gateway_transaction_id or not reference or not str(reference).isdigit():
            return None
        order = self.session.query(Order).filter(Order.id == int(reference)).first()
        if order is None:
            return None

        txn = self.session.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order.id,
            PaymentTransaction.gateway_transaction_id.is_(None),
            PaymentTransaction.status == TransactionStatus.PENDING,
        ).order_by(PaymentTransaction.id.desc()).with_for_update().first()

        if txn is None:
            amount = raw_payload.get('transaction_amount')
            txn = PaymentTransaction(
                order_id=order.id,
                payment_method=order.payment_method,
                card_id=order.card_id,
                amount=int(round(float(amount) * 100)) if amount is not None else order.total,
                installments=int(raw_payload.get('installments') or 1),
                status=TransactionStatus.PENDING,
                created_at=now,
            )
            self.session.add(txn)

        txn.gateway_transaction_id = str(gateway_transaction_id)
        self.session.flush()
        logger.info(f"[PAYMENT] Adopted gateway payment {gateway_transaction_id} for order {order.order_number}")
        return txn

    def _lock_transaction_by_gateway_id(self, gateway_transaction_id: str) -> Optional[PaymentTransaction]:
        return self.session.query(PaymentTransaction).filter(
            PaymentTransaction.gateway_transaction_id == str(gateway_transaction_id)
        ).with_for_update().populate_existing().first()

    def _lock_transaction_by_id(self, transaction_id: int) -> PaymentTransaction:
        txn = self.session.query(PaymentTransaction).filter(
            PaymentTransaction.id == transaction_id
        ).with_for_update().populate_existing().first()
        if txn is None:
            raise TransactionNotFoundError()
        return txn

    def reconcile(self, gateway_transaction_id: str) -> Optional[PaymentTransaction]:
        """Fetch the canonical payment from the gateway and apply it."""
        payment = self.gateway.get_payment(gateway_transaction_id)
        return self.apply_gateway_status(payment.gateway_transaction_id, payment.status, payment.raw)

    def reconcile_open_transactions(self, limit: int = 100) -> int:
        """Re-fetch every pending/processing transaction. Returns how many were checked."""
        gateway_ids = [
            row[0] for row in self.session.query(PaymentTransaction.gateway_transaction_id).filter(
                PaymentTransaction.status.in_(OPEN_TRANSACTION_STATUSES),
                PaymentTransaction.gateway_transaction_id.isnot(None),
            ).order_by(PaymentTransaction.id).limit(limit).all()
        ]
        self.session.rollback()

        checked = 0
        for gateway_id in gateway_ids:
            try:
                self.reconcile(gateway_id)
                checked += 1
            except Now24Error as e:
                logger.error(f"[PAYMENT] Reconcile failed for {gateway_id}: {e.message}")
        return checked

    # =====================================================
    # QUERIES
    # =====================================================

    def get_transaction(self, transaction_id: int, user_id: Optional[int] = None) -> PaymentTransaction:
        query = self.session.query(PaymentTransaction).join(Order).filter(PaymentTransaction.id == transaction_id)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        txn = query.first()
        if not txn:
            raise TransactionNotFoundError()
        return txn

    def _notify_status(self, order: Order) -> None:
        user = self.session.get(AppUser, order.user_id)
        dispatch_notification(self.notifier, order.user_id, NotificationKind.ORDER_STATUS_CHANGED, {
            'order_id': order.id,
            'order_number': order.order_number,
            'status': order.status.value,
            'total': order.total,
            'total_display': money_br(order.total),
            'email': user.email if user else None,
        })
