#!/usr/bin/env python3
"""
Leverage controller management CLI.

Talks to the controller API over HTTP basic auth.

Usage:
    python manage_controllers.py list                       # configs on disk + registered controllers
    python manage_controllers.py status <id>                # phase, leverage, TWAP state
    python manage_controllers.py advise <id>                # advisory action + next chunk
    python manage_controllers.py run <id> <operation>       # engage / rebalance / iterate-rebalance / ...
    python manage_controllers.py deposit <id> <units>       # deposit collateral units per share
    python manage_controllers.py withdraw <id> <units>
"""

import argparse
import asyncio
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml

API_URL = os.getenv("LEVERAGE_API_URL", "http://localhost:8000")
API_USERNAME = os.getenv("LEVERAGE_API_USERNAME", "admin")
API_PASSWORD = os.getenv("LEVERAGE_API_PASSWORD", "admin")

OPERATIONS = ["engage", "rebalance", "iterate-rebalance", "ripcord", "disengage", "reinvest"]


class ControllerConfigFile:
    def __init__(self, config_file: Path):
        self.config_file = config_file
        self.name = config_file.stem
        self.data: Dict[str, Any] = {}
        self._load()

    def _load(self):
        try:
            with open(self.config_file) as f:
                self.data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: cannot load {self.config_file}: {e}")

    @property
    def controller_id(self) -> str:
        return self.data.get("id") or self.name

    @property
    def controller_name(self) -> str:
        return self.data.get("controller_name", "N/A")

    @property
    def target(self) -> str:
        return str(self.data.get("target_leverage_ratio", "N/A"))

    def __str__(self):
        return f"{self.controller_id} ({self.controller_name}, target {self.target})"


class ControllerManager:
    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self.base_path = Path(__file__).parent
        self.configs_dir = self.base_path / "bots" / "conf" / "controllers"
        self.client = client or httpx.AsyncClient(
            base_url=API_URL,
            auth=(API_USERNAME, API_PASSWORD),
            timeout=60.0
        )

    async def close(self):
        await self.client.aclose()

    def scan_configs(self) -> List[ControllerConfigFile]:
        configs = []
        for f in sorted(self.configs_dir.glob("*.yml")):
            if f.name.startswith("."):
                continue
            config = ControllerConfigFile(f)
            if config.data.get("controller_name"):
                configs.append(config)
        return configs

    async def list_controllers(self):
        print("\n" + "=" * 70)
        print("Controller configs")
        print("=" * 70)
        configs = self.scan_configs()
        if not configs:
            print("  (no configs found)")
        for config in configs:
            print(f"  {config}")

        response = await self.client.get("/controllers")
        print("\nRegistered")
        print("-" * 60)
        if response.status_code == 200:
            ids = response.json().get("data", [])
            for controller_id in ids or ["(none)"]:
                print(f"  {controller_id}")
        else:
            print(f"  error {response.status_code}: {response.text}")
        print("=" * 70)

    async def status(self, controller_id: str) -> Optional[Dict[str, Any]]:
        response = await self.client.get(f"/controllers/{controller_id}/status")
        if response.status_code != 200:
            print(f"✗ {response.status_code}: {self._detail(response)}")
            return None
        data = response.json()
        print(f"\n{controller_id}")
        print("-" * 60)
        for key in ("phase", "leverage_ratio", "twap_leverage_ratio", "collateral_value",
                    "base_balance", "spot_balance", "incentive_balance"):
            if key in data:
                print(f"  {key:<22} {data[key]}")
        return data

    async def advise(self, controller_id: str) -> Optional[Dict[str, Any]]:
        response = await self.client.get(f"/controllers/{controller_id}/should-rebalance")
        if response.status_code != 200:
            print(f"✗ {response.status_code}: {self._detail(response)}")
            return None
        advice = response.json()
        chunk = (await self.client.get(f"/controllers/{controller_id}/chunk-rebalance-notional")).json()
        print(f"  action: {advice['action_name']} ({advice['action']})")
        print(f"  next chunk: {chunk.get('notional')} "
              f"sell {chunk.get('sell_asset_a')} / buy {chunk.get('buy_asset_a')}")
        return advice

    async def run(self, controller_id: str, operation: str) -> Optional[Dict[str, Any]]:
        response = await self.client.post(f"/controllers/{controller_id}/{operation}")
        return self._report(operation, response)

    async def collateral(self, controller_id: str, operation: str, units: str) -> Optional[Dict[str, Any]]:
        response = await self.client.post(
            f"/controllers/{controller_id}/{operation}",
            json={"collateral_units": units},
        )
        return self._report(operation, response)

    def _report(self, operation: str, response: httpx.Response) -> Optional[Dict[str, Any]]:
        if response.status_code == 200:
            data = response.json()
            print(f"✓ {operation}: leverage {data.get('leverage_ratio')}, "
                  f"chunk {data.get('chunk_notional')}, amount {data.get('amount')}")
            return data
        print(f"✗ {operation} rejected ({response.status_code}): {self._detail(response)}")
        return None

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return response.json().get("detail", response.text)
        except ValueError:
            return response.text


async def main():
    parser = argparse.ArgumentParser(
        description="Leverage controller management tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="command")

    subparsers.add_parser("list", help="List configs and registered controllers")

    status_p = subparsers.add_parser("status", help="Show controller status")
    status_p.add_argument("id", help="Controller id")

    advise_p = subparsers.add_parser("advise", help="Show the advised action")
    advise_p.add_argument("id", help="Controller id")

    run_p = subparsers.add_parser("run", help="Run an operation")
    run_p.add_argument("id", help="Controller id")
    run_p.add_argument("operation", choices=OPERATIONS)

    for name in ("deposit", "withdraw"):
        p = subparsers.add_parser(name, help=f"{name.capitalize()} collateral units per share")
        p.add_argument("id", help="Controller id")
        p.add_argument("units", help="Collateral units")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    manager = ControllerManager()

    try:
        if args.command == "list":
            await manager.list_controllers()
        elif args.command == "status":
            await manager.status(args.id)
        elif args.command == "advise":
            await manager.advise(args.id)
        elif args.command == "run":
            await manager.run(args.id, args.operation)
        elif args.command in ("deposit", "withdraw"):
            await manager.collateral(args.id, args.command, args.units)
    finally:
        await manager.close()


if __name__ == "__main__":
    asyncio.run(main())
