from decimal import Decimal
from typing import Callable, Optional, Protocol

from .components import (
    ONE_DECIMAL,
    ExchangeSettings,
    Fill,
    PositionSnapshot,
    TradeInstruction,
    TradeSide,
)


class PositionLedger(Protocol):
    """Position accounting: collateral, perp balances, spot leg and the price oracle."""

    def collateral_value(self) -> Decimal: ...

    def base_balance(self) -> Decimal: ...

    def base_price(self) -> Decimal: ...

    def total_supply(self) -> Decimal: ...

    def spot_balance(self) -> Decimal: ...

    def deposit(self, amount: Decimal) -> None: ...

    def withdraw(self, amount: Decimal) -> None: ...

    def withdraw_funding(self) -> Decimal: ...


class TradeVenue(Protocol):
    name: str

    def execute(self, instruction: TradeInstruction) -> Fill: ...


class RewardCustody(Protocol):
    def transfer(self, recipient: str, amount: Decimal) -> None: ...


class SnapshotBuilder:
    def __init__(self, *, ledger: PositionLedger) -> None:
        self._ledger = ledger

    def build(self, *, now: float) -> PositionSnapshot:
        return PositionSnapshot(
            now=now,
            collateral_value=self._ledger.collateral_value(),
            base_balance=self._ledger.base_balance(),
            base_price=self._ledger.base_price(),
            total_supply=self._ledger.total_supply(),
            spot_balance=self._ledger.spot_balance(),
        )


class InstructionFactory:
    """Turns signed chunks into slippage-bounded venue instructions."""

    def __init__(self, *, exchange: Callable[[], ExchangeSettings]) -> None:
        self._exchange = exchange

    def build_perp_trade(
        self,
        *,
        venue: str,
        chunk: Decimal,
        price: Decimal,
        slippage: Decimal,
    ) -> Optional[TradeInstruction]:
        if chunk == 0:
            return None
        exchange = self._exchange()
        side = TradeSide.BUY if chunk > 0 else TradeSide.SELL
        amount = abs(chunk)
        return TradeInstruction(
            venue=venue,
            side=side,
            asset=exchange.base_asset,
            amount=amount,
            limit=self.quote_limit(side, amount, price, slippage),
            routing=dict(exchange.routing),
        )

    def build_spot_trade(
        self,
        *,
        venue: str,
        side: TradeSide,
        amount: Decimal,
        price: Decimal,
        slippage: Decimal,
        amount_in_is_quote: bool = False,
    ) -> Optional[TradeInstruction]:
        if amount <= 0:
            return None
        exchange = self._exchange()
        if amount_in_is_quote:
            limit = amount / price * (ONE_DECIMAL - slippage) if price > 0 else Decimal("0")
        else:
            limit = self.quote_limit(side, amount, price, slippage)
        return TradeInstruction(
            venue=venue,
            side=side,
            asset=exchange.spot_asset,
            amount=amount,
            limit=limit,
            amount_in_is_quote=amount_in_is_quote,
            routing=dict(exchange.routing),
        )

    @staticmethod
    def quote_limit(side: TradeSide, amount: Decimal, price: Decimal, slippage: Decimal) -> Decimal:
        notional = amount * price
        if side == TradeSide.BUY:
            return notional * (ONE_DECIMAL + slippage)
        return notional * (ONE_DECIMAL - slippage)
