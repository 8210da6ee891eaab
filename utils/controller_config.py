import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

_INVALID_ID_CHARS_RE = re.compile(r"[^a-zA-Z0-9_.-]+")


def normalize_config_name(config_name: Optional[str]) -> Optional[str]:
    if not config_name:
        return None
    if config_name.lower().endswith((".yml", ".yaml")):
        return config_name
    return f"{config_name}.yml"


def sanitize_controller_id(controller_id: str) -> str:
    if not controller_id:
        return "controller"
    normalized = controller_id.strip().replace(" ", "_")
    normalized = _INVALID_ID_CHARS_RE.sub("-", normalized)
    normalized = re.sub(r"-{2,}", "-", normalized)
    normalized = normalized.strip("-.")
    if not normalized:
        return "controller"
    return normalized


def read_yaml_file(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        content = yaml.safe_load(handle) or {}
    if not isinstance(content, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(content).__name__}")
    return content


def dump_dict_to_yaml(path: Union[str, Path], data: Dict[str, Any]) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
