"""
Configuration Loader (``market_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``market_config.schema`` dataclasses.  The single public entry point for
runtime config is ``market_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from market_config.schema import FeeSettings, MarketplaceSettings, NegotiationSettings

_INT_FIELDS = {
    "fees": ("topup_fee", "payout_fee", "order_fee_bps", "consultation_fee"),
    "negotiation": ("price_floor", "max_delivery_days"),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Compute SHA-256 checksum of canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def apply_overrides(data: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Return a copy of ``data`` with flat overrides placed in their section.

    ``order_fee_bps=1500`` lands in ``fees``; ``price_floor=300`` lands in
    ``negotiation``; top-level keys (``currency``) stay top-level.

    Raises:
        ValueError: an override names no known setting.
    """
    merged = {
        key: (dict(value) if isinstance(value, dict) else value)
        for key, value in data.items()
    }
    fee_keys = {f for f in FeeSettings.__dataclass_fields__}
    negotiation_keys = {f for f in NegotiationSettings.__dataclass_fields__}
    for key, value in overrides.items():
        if key in fee_keys:
            merged.setdefault("fees", {})[key] = value
        elif key in negotiation_keys:
            merged.setdefault("negotiation", {})[key] = value
        elif key in ("currency", "config_id", "version"):
            merged[key] = value
        else:
            raise ValueError(f"Unknown configuration override: {key}")
    return merged


def _validate(data: dict[str, Any]) -> None:
    errors: list[str] = []
    for section, names in _INT_FIELDS.items():
        values = data.get(section) or {}
        for name in names:
            if name not in values:
                continue
            value = values[name]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"{section}.{name} must be a non-negative integer, got {value!r}")
    fees = data.get("fees") or {}
    if isinstance(fees.get("order_fee_bps"), int) and fees["order_fee_bps"] > 10_000:
        errors.append("fees.order_fee_bps must not exceed 10000")
    if fees.get("consultation_fee") == 0:
        errors.append("fees.consultation_fee must be positive")
    if (data.get("negotiation") or {}).get("max_delivery_days") == 0:
        errors.append("negotiation.max_delivery_days must be positive")
    currency = data.get("currency")
    if not isinstance(currency, str) or not currency:
        errors.append("currency is required")
    flag = (data.get("negotiation") or {}).get("auto_reject_sibling_proposals", False)
    if not isinstance(flag, bool):
        errors.append("negotiation.auto_reject_sibling_proposals must be a boolean")
    if errors:
        raise ValueError(
            "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


def parse_settings(data: dict[str, Any]) -> MarketplaceSettings:
    """
    Parse and validate a ``MarketplaceSettings`` from a dict.

    Raises:
        KeyError: ``config_id`` is missing.
        ValueError: a value is out of range or of the wrong type.
    """
    _validate(data)
    fees = data.get("fees") or {}
    negotiation = data.get("negotiation") or {}
    return MarketplaceSettings(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        currency=data["currency"],
        fees=FeeSettings(**fees),
        negotiation=NegotiationSettings(**negotiation),
        checksum=compute_checksum(data),
    )
