import asyncio
import json
import unittest

import httpx

from manage_controllers import ControllerManager


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.method == "GET" and path == "/controllers":
        return httpx.Response(200, json={"data": ["eth_perp_leverage_2x"]})
    if request.method == "POST" and path == "/controllers/eth_perp_leverage_2x/engage":
        return httpx.Response(
            200,
            json={
                "controller_id": "eth_perp_leverage_2x",
                "operation": "engage",
                "chunk_notional": "10",
                "leverage_ratio": "2",
                "twap_leverage_ratio": "0",
            },
        )
    if request.method == "POST" and path == "/controllers/eth_perp_leverage_2x/deposit":
        units = json.loads(request.content)["collateral_units"]
        return httpx.Response(200, json={"operation": "deposit", "amount": str(int(units) * 100)})
    return httpx.Response(409, json={"detail": "Base position must NOT exist"})


class ControllerManagerTests(unittest.TestCase):
    def _manager(self):
        client = httpx.AsyncClient(base_url="http://test", transport=httpx.MockTransport(_handler))
        return ControllerManager(client=client)

    def test_scan_configs_finds_shipped_controllers(self):
        names = {config.controller_name for config in self._manager().scan_configs()}
        self.assertEqual(names, {"perp_leverage", "perp_basis"})

    def test_run_reports_success_and_rejection(self):
        async def _scenario():
            manager = self._manager()
            try:
                ok = await manager.run("eth_perp_leverage_2x", "engage")
                rejected = await manager.run("eth_perp_leverage_2x", "disengage")
                deposit = await manager.collateral("eth_perp_leverage_2x", "deposit", "5")
            finally:
                await manager.close()
            return ok, rejected, deposit

        ok, rejected, deposit = asyncio.run(_scenario())

        self.assertEqual(ok["leverage_ratio"], "2")
        self.assertIsNone(rejected)
        self.assertEqual(deposit["amount"], "500")


if __name__ == "__main__":
    unittest.main()
