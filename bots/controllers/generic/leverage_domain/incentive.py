from decimal import Decimal
from typing import Optional

from .components import ZERO
from .errors import PreconditionFailed
from .io import RewardCustody


class IncentiveController:
    """Reward pool paid out to ripcord callers.

    The pool balance is read and decremented together with the custody transfer, so
    a payout never exceeds what is held.
    """

    def __init__(self, custody: RewardCustody, balance: Decimal = ZERO) -> None:
        self._custody = custody
        self._balance = balance

    @property
    def balance(self) -> Decimal:
        return self._balance

    @staticmethod
    def current_reward(balance: Decimal, configured: Decimal) -> Decimal:
        return max(min(balance, configured), ZERO)

    def reward_for(self, configured: Decimal) -> Decimal:
        return self.current_reward(self._balance, configured)

    def fund(self, amount: Decimal) -> Decimal:
        if amount <= 0:
            raise PreconditionFailed("Funding amount must be > 0")
        self._balance += amount
        return self._balance

    def pay(self, recipient: str, configured: Decimal) -> Decimal:
        amount = self.reward_for(configured)
        if amount <= 0:
            return ZERO
        self._custody.transfer(recipient, amount)
        self._balance -= amount
        return amount

    def withdraw_balance(self, recipient: str, amount: Optional[Decimal] = None) -> Decimal:
        amount = self._balance if amount is None else min(amount, self._balance)
        if amount <= 0:
            return ZERO
        self._custody.transfer(recipient, amount)
        self._balance -= amount
        return amount
