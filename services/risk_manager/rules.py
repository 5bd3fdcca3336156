# Risk management rules
from typing import List, Tuple

from core.trading.models import BrokerOrderRequest, OrderType
from .models import RiskContext, RiskCheckResult


class RiskRule:
    """Base class for risk rules"""

    # A failing check of this rule trips the sticky circuit breaker
    trips_circuit_breaker = False

    def __init__(self, name: str):
        self.name = name

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        """
        Check if the order passes this risk rule

        Returns:
            Tuple[bool, str]: (passes, reason)
        """
        raise NotImplementedError


class OrderParametersRule(RiskRule):
    """Positive quantity; LIMIT orders need a positive price"""

    def __init__(self):
        super().__init__("OrderParameters")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        if order.quantity <= 0:
            return False, f"Invalid quantity: {order.quantity} (must be > 0)"
        if order.type is OrderType.LIMIT and (order.price is None or order.price <= 0):
            return False, f"Invalid price: {order.price} (must be > 0 for LIMIT orders)"
        return True, "Order parameters valid"


class CircuitBreakerRule(RiskRule):
    def __init__(self):
        super().__init__("CircuitBreaker")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        if context.limits.circuit_broken:
            return False, "Circuit breaker active - trading halted"
        return True, "Circuit breaker clear"


class DailyLossRule(RiskRule):
    """Realized + unrealized loss against the absolute and percentage limits"""

    trips_circuit_breaker = True

    def __init__(self):
        super().__init__("DailyLoss")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        daily_pnl = context.daily_pnl
        max_loss = context.limits.max_daily_loss
        if daily_pnl <= -max_loss:
            return False, f"Daily loss limit exceeded: {daily_pnl:.2f} <= -{max_loss:.2f}"

        percent_limit = context.account_capital * context.limits.max_daily_loss_percent / 100
        if daily_pnl <= -percent_limit:
            return False, (
                f"Daily loss limit exceeded: {daily_pnl:.2f} <= -{percent_limit:.2f} "
                f"({context.limits.max_daily_loss_percent}% of capital)"
            )
        return True, "Daily loss within limits"


class ManualReviewRule(RiskRule):
    """Optionally hold orders for symbols flagged by reconciliation"""

    def __init__(self):
        super().__init__("ManualReview")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        symbol = order.symbol.strip().upper()
        if context.block_on_manual_review and symbol in context.manual_review_symbols:
            return False, f"{symbol} is awaiting manual reconciliation review"
        return True, "No pending review"


class MaxOpenPositionsRule(RiskRule):
    """Only orders opening a new symbol count against the limit"""

    def __init__(self):
        super().__init__("MaxOpenPositions")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        limit = context.limits.max_open_positions
        if context.opens_new_position and context.open_positions_count >= limit:
            return False, f"Max open positions limit reached: {context.open_positions_count} >= {limit}"
        return True, "Open positions within limit"


class MaxPositionSizeRule(RiskRule):
    """Order notional (quantity * price) against the per-order cap"""

    def __init__(self):
        super().__init__("MaxPositionSize")

    def check(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[bool, str]:
        price = order.price if order.price else (context.reference_price or 0.0)
        notional = order.quantity * price
        if notional > context.limits.max_position_size:
            return False, (
                f"Order value {notional:.2f} exceeds max position size "
                f"{context.limits.max_position_size:.2f}"
            )
        return True, "Order value within limit"


class RiskRuleEngine:
    """Evaluates rules in order and stops at the first rejection"""

    def __init__(self, rules: List[RiskRule] = None):
        self.rules = rules or [
            OrderParametersRule(),
            CircuitBreakerRule(),
            DailyLossRule(),
            ManualReviewRule(),
            MaxOpenPositionsRule(),
            MaxPositionSizeRule(),
        ]

    def evaluate(self, order: BrokerOrderRequest, context: RiskContext) -> Tuple[RiskCheckResult, RiskRule]:
        """
        Returns:
            The check result and the rule that decided it (None when allowed)
        """
        for rule in self.rules:
            passed, reason = rule.check(order, context)
            if not passed:
                return RiskCheckResult.reject(reason, rule.name), rule
        return RiskCheckResult.allow(), None
