from decimal import Decimal

from .components import ChunkPlan


class ChunkPlanner:
    @staticmethod
    def plan_chunk(total_notional: Decimal, max_trade_size: Decimal) -> Decimal:
        if max_trade_size <= 0:
            raise ValueError("max_trade_size must be > 0")
        if abs(total_notional) <= max_trade_size:
            return total_notional
        return max_trade_size if total_notional > 0 else -max_trade_size

    @classmethod
    def plan(cls, total_notional: Decimal, max_trade_size: Decimal) -> ChunkPlan:
        return ChunkPlan(chunk=cls.plan_chunk(total_notional, max_trade_size), total=total_notional)
