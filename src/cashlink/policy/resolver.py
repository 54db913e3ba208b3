"""Policy resolver — loads runtime policy from config/cashlink_params.json.

Every tunable of the engine comes from here: arithmetic bounds, the
fully-redeemed rule, the close policy, fee sinks and the link storage
deposit. Nothing is hard-coded in the engine itself.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Optional


PARAMS_FILENAME = "cashlink_params.json"

FULLY_REDEEMED_RULES = ("dust_threshold", "exhausted_only")


class PolicyResolver:
    """Read-only view over the cash link policy parameters.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        ceiling = resolver.amount_ceiling()
        rule = resolver.fully_redeemed_rule()
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def with_overrides(self, **overrides: Any) -> PolicyResolver:
        """Return a copy with selected leaf values replaced.

        Keys are leaf names (e.g. fully_redeemed_rule=...); the section
        holding the leaf is found automatically.
        """
        params = copy.deepcopy(self._params)
        for key, value in overrides.items():
            section = self._section_for(params, key)
            if section is None:
                raise ValueError(f"Unknown policy parameter: {key}")
            section[key] = value
        return PolicyResolver(params)

    # ------------------------------------------------------------------
    # Arithmetic bounds
    # ------------------------------------------------------------------

    def amount_ceiling(self) -> int:
        return int(self._params["amounts"]["amount_ceiling"])

    def bps_denominator(self) -> int:
        return int(self._params["amounts"]["bps_denominator"])

    def ppm_denominator(self) -> int:
        return int(self._params["amounts"]["ppm_denominator"])

    # ------------------------------------------------------------------
    # Redemption and lifecycle
    # ------------------------------------------------------------------

    def fully_redeemed_rule(self) -> str:
        return self._params["redemption"]["fully_redeemed_rule"]

    def default_min_amount(self) -> int:
        return int(self._params["redemption"]["default_min_amount"])

    def close_requires_no_redemptions(self) -> bool:
        return bool(self._params["lifecycle"]["close_requires_no_redemptions"])

    def seconds_per_day(self) -> int:
        return int(self._params["lifecycle"]["seconds_per_day"])

    def link_storage_deposit(self) -> int:
        return int(self._params["lifecycle"]["link_storage_deposit"])

    # ------------------------------------------------------------------
    # Fee sinks
    # ------------------------------------------------------------------

    def platform_fee_account(self) -> str:
        return self._params["sinks"]["platform_fee_account"]

    def fee_payer_account(self) -> str:
        return self._params["sinks"]["fee_payer_account"]

    def fee_params(self) -> dict[str, Any]:
        """All parameters the fee calculator needs, as one mapping."""
        return {
            "amount_ceiling": self.amount_ceiling(),
            "bps_denominator": self.bps_denominator(),
            "ppm_denominator": self.ppm_denominator(),
        }

    def _validate(self) -> None:
        for section in ("amounts", "redemption", "lifecycle", "sinks"):
            if section not in self._params:
                raise ValueError(f"Policy missing section: {section}")
        if self.amount_ceiling() <= 0:
            raise ValueError("amount_ceiling must be positive")
        if self.bps_denominator() <= 0 or self.ppm_denominator() <= 0:
            raise ValueError("bps/ppm denominators must be positive")
        if self.fully_redeemed_rule() not in FULLY_REDEEMED_RULES:
            raise ValueError(
                f"fully_redeemed_rule must be one of {FULLY_REDEEMED_RULES}, "
                f"got {self.fully_redeemed_rule()!r}"
            )
        if self.default_min_amount() < 1:
            raise ValueError("default_min_amount must be at least 1")
        if self.link_storage_deposit() < 0:
            raise ValueError("link_storage_deposit cannot be negative")
        if self.seconds_per_day() <= 0:
            raise ValueError("seconds_per_day must be positive")

    @staticmethod
    def _section_for(params: dict[str, Any], key: str) -> Optional[dict[str, Any]]:
        for section in params.values():
            if isinstance(section, dict) and key in section:
                return section
        return None
