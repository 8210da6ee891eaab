import json
from typing import Any, Dict, List, Type

from pydantic_core import PydanticUndefined

# Controller config fields grouped the way the settings setters accept them.
SETTINGS_GROUPS: Dict[str, List[str]] = {
    "methodology": [
        "target_leverage_ratio",
        "min_leverage_ratio",
        "max_leverage_ratio",
        "recentering_speed",
        "rebalance_interval",
        "reinvest_interval",
    ],
    "execution": ["twap_cooldown_period", "slippage_tolerance"],
    "incentive": [
        "incentivized_twap_cooldown_period",
        "incentivized_slippage_tolerance",
        "reward_amount",
        "incentivized_leverage_ratio",
    ],
    "exchange": [
        "exchange_name",
        "twap_max_trade_size",
        "incentivized_twap_max_trade_size",
        "base_asset",
        "quote_asset",
        "spot_asset",
        "collateral_asset",
        "routing",
    ],
}


def _field_group(name: str) -> str:
    for group, names in SETTINGS_GROUPS.items():
        if name in names:
            return group
    return ""


def _prune_schema(schema: Dict[str, Any], hidden_fields: set) -> Dict[str, Any]:
    if not hidden_fields or not isinstance(schema, dict):
        return schema
    pruned = dict(schema)
    properties = pruned.get("properties")
    if isinstance(properties, dict):
        pruned["properties"] = {k: v for k, v in properties.items() if k not in hidden_fields}
    required = pruned.get("required")
    if isinstance(required, list):
        pruned["required"] = [item for item in required if item not in hidden_fields]
    return pruned


def build_controller_config_schema(config_class: Type) -> Dict[str, Any]:
    """JSON schema plus defaults and per-field metadata for a controller config class.

    Fields marked ``hidden`` are dropped; every other field carries its settings group
    (empty for identity and paper-account fields).
    """
    schema = config_class.model_json_schema()

    defaults: Dict[str, Any] = {}
    meta: Dict[str, Dict[str, Any]] = {}
    for name, field in config_class.model_fields.items():
        if field.default_factory is not None:
            default = field.default_factory()
        elif field.default is PydanticUndefined:
            default = None
        else:
            default = field.default
        extra = field.json_schema_extra if isinstance(field.json_schema_extra, dict) else {}
        if extra.get("hidden") is True:
            continue
        defaults[name] = default
        meta[name] = dict(extra)
        meta[name]["group"] = _field_group(name)

    hidden_fields = set(config_class.model_fields) - set(meta)
    schema = _prune_schema(schema, hidden_fields)

    payload = {
        "schema": schema,
        "defaults": defaults,
        "meta": meta,
        "groups": {group: [n for n in names if n in meta] for group, names in SETTINGS_GROUPS.items()},
    }
    # Decimal defaults are not JSON serializable.
    return json.loads(json.dumps(payload, default=str))
