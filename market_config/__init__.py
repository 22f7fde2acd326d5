"""
market_config -- single public entrypoint for marketplace configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``market_kernel`` and below
    ``market_services``.  The kernel MUST NEVER import from
    ``market_config``; ``market_config.bridges`` translates settings into
    the kernel's ``MarketPolicy``.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- schema validation failures or unknown overrides.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``MARKET_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every fee charged back to the configuration in force.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from market_config.loader import apply_overrides, load_yaml_file, parse_settings
from market_config.schema import FeeSettings, MarketplaceSettings, NegotiationSettings

_logger = logging.getLogger("market_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None, **overrides: Any) -> MarketplaceSettings:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to ``market_config/sets/default.yaml``.
        **overrides: Flat setting overrides (``order_fee_bps=1500``,
            ``auto_reject_sibling_proposals=True``), validated like file values.

    Returns:
        Frozen ``MarketplaceSettings``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If validation fails or an override is unknown.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)
    if overrides:
        data = apply_overrides(data, overrides)

    settings = parse_settings(data)

    _logger.info(
        "MARKET_CONFIG_TRACE",
        extra={
            "trace_type": "MARKET_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "currency": settings.currency,
            "source": str(config_path),
            "overrides": sorted(overrides),
        },
    )
    return settings


__all__ = [
    "get_active_config",
    "MarketplaceSettings",
    "FeeSettings",
    "NegotiationSettings",
]
