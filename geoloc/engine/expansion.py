"""Relance state machine: which zone and density the next pass uses.

Keyed by the number of runs already committed for the request:

    0   original search, zone and density as requested
    1   radius + fixed increment, moderate density
    2   fixed wider radius, postal/city area enforced, higher density
    3+  fixed maximum radius, highest density (terminal level)

Radii never shrink from one level to the next. Beyond ``max_relances``
relances the controller answers :data:`EXHAUSTED`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Optional, Union

from geoloc.core.config import SearchPolicy
from geoloc.models import SearchZone

logger = logging.getLogger(__name__)

TERMINAL_LEVEL = 3


class _Exhausted:
    _instance: Optional["_Exhausted"] = None

    def __new__(cls) -> "_Exhausted":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EXHAUSTED"

    def __bool__(self) -> bool:
        return False


EXHAUSTED = _Exhausted()


@dataclass(frozen=True)
class ExpansionPlan:
    level: int
    zone: SearchZone
    density: int
    restrict_to_area: bool = False


class ExpansionController:
    def __init__(self, policy: Optional[SearchPolicy] = None) -> None:
        self._policy = policy or SearchPolicy()

    @property
    def policy(self) -> SearchPolicy:
        return self._policy

    def parameters_for_level(self, zone: SearchZone, level: int, base_density: Optional[int] = None) -> ExpansionPlan:
        """Zone and density for ``level``; levels above 3 reuse level 3."""
        if level < 0:
            raise ValueError("level must not be negative")
        policy = self._policy
        density = base_density or policy.initial_density
        if level == 0:
            return ExpansionPlan(level=0, zone=zone, density=density)

        level1_radius = zone.radius_m + policy.relance_radius_increment_m
        if level == 1:
            return ExpansionPlan(
                level=1,
                zone=replace(zone, radius_m=level1_radius),
                density=max(density, policy.level1_density),
            )

        level2_radius = max(level1_radius, policy.level2_radius_m)
        if level == 2:
            return ExpansionPlan(
                level=2,
                zone=replace(zone, radius_m=level2_radius),
                density=max(density, policy.level2_density),
                restrict_to_area=True,
            )

        return ExpansionPlan(
            level=level,
            zone=replace(zone, radius_m=max(level2_radius, policy.level3_radius_m)),
            density=max(density, policy.level3_density),
            restrict_to_area=True,
        )

    def plan(
        self,
        zone: SearchZone,
        completed_runs: int,
        base_density: Optional[int] = None,
    ) -> Union[ExpansionPlan, _Exhausted]:
        if completed_runs < 0:
            raise ValueError("completed_runs must not be negative")
        relances_used = max(0, completed_runs - 1)
        if completed_runs > 0 and relances_used >= self._policy.max_relances:
            logger.info("Relance cap reached (%d used of %d)", relances_used, self._policy.max_relances)
            return EXHAUSTED
        plan = self.parameters_for_level(zone, completed_runs, base_density)
        logger.info(
            "Expansion level %d: radius=%.0fm density=%d restrict_to_area=%s",
            plan.level,
            plan.zone.radius_m,
            plan.density,
            plan.restrict_to_area,
        )
        return plan
