from collections import defaultdict
from decimal import Decimal
from typing import DefaultDict, List, Optional

from .components import ONE_DECIMAL, ZERO, Fill, TradeInstruction, TradeSide
from .errors import PreconditionFailed


class PaperLedger:
    """In-memory position ledger filled at the oracle price.

    ``collateral`` sits in the perp account, ``cash`` is idle quote outside it and
    funds spot purchases.
    """

    def __init__(
        self,
        *,
        collateral: Decimal = ZERO,
        cash: Decimal = ZERO,
        price: Decimal = ONE_DECIMAL,
        supply: Decimal = ONE_DECIMAL,
        base: Decimal = ZERO,
        spot: Decimal = ZERO,
        performance_fee: Decimal = ZERO,
    ) -> None:
        self.collateral = collateral
        self.cash = cash
        self.price = price
        self.supply = supply
        self.base = base
        self.quote = -base * price
        self.spot = spot
        self.pending_funding = ZERO
        self.performance_fee = performance_fee
        self.fees_collected = ZERO

    def collateral_value(self) -> Decimal:
        return self.collateral + self.base * self.price + self.quote

    def base_balance(self) -> Decimal:
        return self.base

    def base_price(self) -> Decimal:
        return self.price

    def total_supply(self) -> Decimal:
        return self.supply

    def spot_balance(self) -> Decimal:
        return self.spot

    def deposit(self, amount: Decimal) -> None:
        if amount <= 0:
            return
        if amount > self.cash:
            raise PreconditionFailed("Insufficient cash to deposit")
        self.cash -= amount
        self.collateral += amount

    def withdraw(self, amount: Decimal) -> None:
        if amount <= 0:
            return
        if amount > self.free_collateral():
            raise PreconditionFailed("Insufficient collateral to withdraw")
        self.collateral -= amount
        self.cash += amount

    def free_collateral(self) -> Decimal:
        return max(self.collateral_value(), ZERO)

    def accrue_funding(self, amount: Decimal) -> None:
        self.pending_funding += amount

    def withdraw_funding(self) -> Decimal:
        gross = self.pending_funding
        self.pending_funding = ZERO
        if gross <= 0:
            return ZERO
        fee = gross * self.performance_fee
        self.fees_collected += fee
        net = gross - fee
        self.cash += net
        return net

    def set_price(self, price: Decimal) -> None:
        if price <= 0:
            raise ValueError("price must be > 0")
        self.price = price

    def apply_perp_fill(self, base_delta: Decimal, quote_delta: Decimal) -> None:
        self.base += base_delta
        self.quote += quote_delta
        if self.base == 0:
            self.collateral += self.quote
            self.quote = ZERO


class _PaperVenue:
    def __init__(self, name: str, ledger: PaperLedger, fee_rate: Decimal = ZERO) -> None:
        self.name = name
        self._ledger = ledger
        self._fee_rate = fee_rate
        self.fills: List[Fill] = []

    def _check_limit(self, instruction: TradeInstruction, quote_amount: Decimal, base_amount: Decimal) -> None:
        if instruction.side == TradeSide.BUY:
            if instruction.amount_in_is_quote:
                if base_amount < instruction.limit:
                    raise PreconditionFailed("Slippage tolerance exceeded")
            elif quote_amount > instruction.limit:
                raise PreconditionFailed("Slippage tolerance exceeded")
        elif quote_amount < instruction.limit:
            raise PreconditionFailed("Slippage tolerance exceeded")


class PaperPerpVenue(_PaperVenue):
    def execute(self, instruction: TradeInstruction) -> Fill:
        price = self._ledger.price
        base_amount = instruction.amount
        quote_amount = base_amount * price
        if instruction.side == TradeSide.BUY:
            quote_amount *= ONE_DECIMAL + self._fee_rate
        else:
            quote_amount *= ONE_DECIMAL - self._fee_rate
        self._check_limit(instruction, quote_amount, base_amount)

        if instruction.side == TradeSide.BUY:
            fill = Fill(instruction=instruction, base_delta=base_amount, quote_delta=-quote_amount)
        else:
            fill = Fill(instruction=instruction, base_delta=-base_amount, quote_delta=quote_amount)
        self._ledger.apply_perp_fill(fill.base_delta, fill.quote_delta)
        self.fills.append(fill)
        return fill


class PaperSpotVenue(_PaperVenue):
    def execute(self, instruction: TradeInstruction) -> Fill:
        ledger = self._ledger
        price = ledger.price
        if instruction.amount_in_is_quote:
            quote_amount = instruction.amount
            base_amount = quote_amount * (ONE_DECIMAL - self._fee_rate) / price
        else:
            base_amount = instruction.amount
            quote_amount = base_amount * price
            if instruction.side == TradeSide.BUY:
                quote_amount *= ONE_DECIMAL + self._fee_rate
            else:
                quote_amount *= ONE_DECIMAL - self._fee_rate
        self._check_limit(instruction, quote_amount, base_amount)

        if instruction.side == TradeSide.BUY:
            if quote_amount > ledger.cash:
                raise PreconditionFailed("Insufficient cash for spot purchase")
            ledger.cash -= quote_amount
            ledger.spot += base_amount
            fill = Fill(instruction=instruction, base_delta=base_amount, quote_delta=-quote_amount)
        else:
            if base_amount > ledger.spot:
                raise PreconditionFailed("Insufficient spot balance")
            ledger.spot -= base_amount
            ledger.cash += quote_amount
            fill = Fill(instruction=instruction, base_delta=-base_amount, quote_delta=quote_amount)
        self.fills.append(fill)
        return fill


class PaperRewardCustody:
    def __init__(self) -> None:
        self.transfers: DefaultDict[str, Decimal] = defaultdict(lambda: ZERO)

    def transfer(self, recipient: str, amount: Decimal) -> None:
        if amount <= 0:
            return
        self.transfers[recipient] += amount

    def received(self, recipient: str) -> Optional[Decimal]:
        return self.transfers.get(recipient)
