"""Custom exceptions for the now24 order backend."""


class Now24Error(Exception):
    """Base exception for all application errors."""
    code = 'INTERNAL_ERROR'

    def __init__(self, message="Ocorreu um erro interno", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['code'] = self.code
        rv['status'] = 'error'
        return rv


class BusinessLogicError(Now24Error):
    """Exception raised for business logic violations."""
    code = 'BUSINESS_RULE_VIOLATION'

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(Now24Error):
    """Exception raised when a resource is not found."""
    code = 'NOT_FOUND'

    def __init__(self, message="Recurso não encontrado", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(Now24Error):
    """Raised when a caller lacks permission for an action."""
    code = 'UNAUTHORIZED'

    def __init__(self, message="Acesso não autorizado", status_code=403):
        super().__init__(message, status_code)


# =====================================================
# CART / CATALOG
# =====================================================

class EmptyCartError(BusinessLogicError):
    code = 'EMPTY_CART'

    def __init__(self, message="O carrinho está vazio"):
        super().__init__(message)


class InvalidQuantityError(BusinessLogicError):
    code = 'INVALID_QUANTITY'

    def __init__(self, message="A quantidade deve ser maior que zero"):
        super().__init__(message)


class CartItemNotFoundError(NotFoundError):
    code = 'CART_ITEM_NOT_FOUND'

    def __init__(self, message="Item não encontrado no carrinho"):
        super().__init__(message)


class ProductNotFoundError(NotFoundError):
    code = 'PRODUCT_NOT_FOUND'

    def __init__(self, message="Produto não encontrado"):
        super().__init__(message)


class ProductInactiveError(BusinessLogicError):
    """Raised when a cart line points at a deactivated product."""
    code = 'PRODUCT_INACTIVE'

    def __init__(self, product_name):
        super().__init__(
            f'O produto "{product_name}" não está mais ativo',
            status_code=409,
            payload={'product': product_name},
        )


class ProductUnavailableError(BusinessLogicError):
    """Raised when a product is flagged unavailable or discontinued."""
    code = 'PRODUCT_UNAVAILABLE'

    def __init__(self, product_name):
        super().__init__(
            f'O produto "{product_name}" está indisponível',
            status_code=409,
            payload={'product': product_name},
        )


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    code = 'INSUFFICIENT_STOCK'

    def __init__(self, product_name, required, available=None):
        if available is None:
            message = f"Estoque insuficiente para {product_name}: solicitado {required}"
        else:
            message = f"Estoque insuficiente para {product_name}: solicitado {required}, disponível {available}"
        super().__init__(
            message,
            status_code=409,
            payload={'product': product_name, 'required': required, 'available': available},
        )


# =====================================================
# COUPONS
# =====================================================

class CouponError(BusinessLogicError):
    """Base class for coupon rule violations; `reason` names the rule."""
    code = 'COUPON_INVALID'
    reason = 'invalid'

    def __init__(self, message="Cupom inválido", payload=None):
        payload = dict(payload or ())
        payload.setdefault('reason', self.reason)
        super().__init__(message, payload=payload)


class CouponNotFoundError(CouponError):
    code = 'COUPON_NOT_FOUND'
    reason = 'not_found'

    def __init__(self, message="Cupom não encontrado"):
        super().__init__(message)
        self.status_code = 404


class CouponInactiveError(CouponError):
    code = 'COUPON_INACTIVE'
    reason = 'inactive'

    def __init__(self, message="Cupom inativo"):
        super().__init__(message)


class CouponNotYetValidError(CouponError):
    code = 'COUPON_NOT_YET_VALID'
    reason = 'not_yet_valid'

    def __init__(self, message="Cupom ainda não está válido"):
        super().__init__(message)


class CouponExpiredError(CouponError):
    code = 'COUPON_EXPIRED'
    reason = 'expired'

    def __init__(self, message="Cupom expirado"):
        super().__init__(message)


class CouponUsageLimitError(CouponError):
    code = 'COUPON_USAGE_LIMIT'
    reason = 'usage_limit'

    def __init__(self, message="Cupom esgotado"):
        super().__init__(message)


class CouponUserLimitError(CouponError):
    code = 'COUPON_USER_LIMIT'
    reason = 'user_limit'

    def __init__(self, message="Você já utilizou este cupom"):
        super().__init__(message)


class CouponMinimumNotMetError(CouponError):
    code = 'COUPON_MIN_ORDER_VALUE'
    reason = 'min_order_value'

    def __init__(self, min_order_value):
        super().__init__(
            "Valor mínimo do pedido não atingido para este cupom",
            payload={'min_order_value': min_order_value},
        )


class CouponInvalidError(CouponError):
    """Coupon attached to the cart no longer passes validation at checkout."""
    code = 'COUPON_INVALID'

    def __init__(self, reason, message="O cupom aplicado não é mais válido"):
        super().__init__(message, payload={'reason': reason})
        self.reason = reason


# =====================================================
# ORDERS
# =====================================================

class AddressNotFoundError(NotFoundError):
    code = 'ADDRESS_NOT_FOUND'

    def __init__(self, message="Endereço não encontrado"):
        super().__init__(message)


class InvalidPaymentMethodError(BusinessLogicError):
    code = 'INVALID_PAYMENT_METHOD'

    def __init__(self, method):
        super().__init__(f"Método de pagamento inválido: {method}", payload={'payment_method': method})


class CardRequiredError(BusinessLogicError):
    code = 'CARD_REQUIRED'

    def __init__(self, message="Cartão é obrigatório para pagamento com cartão"):
        super().__init__(message)


class CardNotFoundError(NotFoundError):
    code = 'CARD_NOT_FOUND'

    def __init__(self, message="Cartão não encontrado"):
        super().__init__(message)


class CardTypeMismatchError(BusinessLogicError):
    code = 'CARD_TYPE_MISMATCH'

    def __init__(self, message="Tipo do cartão não corresponde ao método de pagamento"):
        super().__init__(message)


class CardDataMissingError(BusinessLogicError):
    code = 'CARD_DATA_MISSING'

    def __init__(self, message="Cartão sem referência permanente no gateway. Cadastre o cartão novamente"):
        super().__init__(message)


class OrderNotFoundError(NotFoundError):
    code = 'ORDER_NOT_FOUND'

    def __init__(self, message="Pedido não encontrado"):
        super().__init__(message)


class OrderAlreadyCancelledError(BusinessLogicError):
    code = 'ALREADY_CANCELLED'

    def __init__(self, message="Pedido já está cancelado"):
        super().__init__(message, status_code=409)


class OrderAlreadyDeliveredError(BusinessLogicError):
    code = 'ALREADY_DELIVERED'

    def __init__(self, message="Não é possível cancelar um pedido já entregue"):
        super().__init__(message, status_code=409)


class InvalidStatusTransitionError(BusinessLogicError):
    code = 'INVALID_STATUS_TRANSITION'

    def __init__(self, current, target):
        super().__init__(
            f"Transição de status inválida: {current} -> {target}",
            status_code=409,
            payload={'from': current, 'to': target},
        )


class OrderCreationError(Now24Error):
    """Raised when order creation keeps failing on transient database conflicts."""
    code = 'ORDER_CREATION_FAILED'

    def __init__(self, message="Não foi possível criar o pedido. Tente novamente"):
        super().__init__(message, 500)


# =====================================================
# PAYMENTS
# =====================================================

class OrderCannotBePaidError(BusinessLogicError):
    code = 'ORDER_CANNOT_BE_PAID'

    def __init__(self, status):
        super().__init__(
            "Pedido não pode ser pago neste status",
            status_code=409,
            payload={'order_status': status},
        )


class PaymentMethodMismatchError(BusinessLogicError):
    code = 'PAYMENT_METHOD_MISMATCH'

    def __init__(self, message="Método de pagamento diferente do informado no pedido"):
        super().__init__(message)


class TransactionNotFoundError(NotFoundError):
    code = 'TRANSACTION_NOT_FOUND'

    def __init__(self, message="Transação não encontrada"):
        super().__init__(message)


class PaymentGatewayError(Now24Error):
    """The gateway answered but refused the request (4xx or malformed)."""
    code = 'PAYMENT_GATEWAY_ERROR'

    def __init__(self, message="Erro ao processar pagamento", status_code=502, payload=None):
        super().__init__(message, status_code, payload)


class PaymentGatewayUnavailableError(PaymentGatewayError):
    """Timeout, connection failure or 5xx. Safe to retry with the same key."""
    code = 'PAYMENT_GATEWAY_UNAVAILABLE'

    def __init__(self, message="Gateway de pagamento indisponível. Tente novamente"):
        super().__init__(message, 503, payload={'retryable': True})


class UnknownGatewayStatusError(PaymentGatewayError):
    code = 'UNKNOWN_GATEWAY_STATUS'

    def __init__(self, raw_status):
        super().__init__(
            f"Status de pagamento desconhecido: {raw_status}",
            payload={'gateway_status': raw_status},
        )
        self.raw_status = raw_status


class UserDataMissingError(BusinessLogicError):
    code = 'USER_DATA_MISSING'

    def __init__(self, message="E-mail e CPF são obrigatórios para salvar cartão"):
        super().__init__(message)
