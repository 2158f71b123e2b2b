"""
Capability keys and the authoritative plan/feature matcher.

A plan's feature list holds three kinds of grant:

    "*"                  Wildcard.ALL - every capability
    "analytics.*"        Category("analytics") - every key whose category is analytics
    "analytics.advanced" Capability("analytics.advanced") - exactly that key

The category of a key is the text before its first '.', so "analytics.*"
grants "analytics.reports.export" as well. A dotted prefix such as
"analytics.reports.*" is not a category grant and only matches itself.

plan_has_feature() is the only matcher. The resolver, upgrade suggestions
and every "available features" enumeration go through it.
"""

import enum
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

WILDCARD = "*"
CATEGORY_SUFFIX = ".*"


class Wildcard(enum.Enum):
    """Marker for the global grant."""
    ALL = WILDCARD

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Category:
    """A capability namespace, e.g. 'analytics'."""
    name: str

    def __str__(self) -> str:
        return f"{self.name}{CATEGORY_SUFFIX}"


@dataclass(frozen=True)
class Capability:
    """A concrete capability key, e.g. 'analytics.advanced'."""
    key: str

    @property
    def category(self) -> Category:
        return Category(self.key.split(".", 1)[0])

    def __str__(self) -> str:
        return self.key


Grant = Union[Wildcard, Category, Capability]


def parse_capability(key: str) -> Capability:
    """
    Parse a requested capability key.

    Raises:
        ValueError: If key is not a non-empty string
    """
    if not isinstance(key, str) or not key:
        raise ValueError(f"Invalid capability key: {key!r}")
    return Capability(key)


def parse_grant(raw: str) -> Grant:
    """
    Parse one entry of a plan's feature list.

    Raises:
        ValueError: If raw is not a non-empty string
    """
    if not isinstance(raw, str) or not raw:
        raise ValueError(f"Invalid feature grant: {raw!r}")
    if raw == WILDCARD:
        return Wildcard.ALL
    if raw.endswith(CATEGORY_SUFFIX):
        prefix = raw[:-len(CATEGORY_SUFFIX)]
        if "." not in prefix:
            return Category(prefix)
    return Capability(raw)


class CapabilitySet:
    """Immutable set of grants with the matching rules applied."""

    def __init__(self, grants: Iterable[Grant] = ()):
        grants = list(grants)
        self._wildcard = Wildcard.ALL in grants
        self._categories: FrozenSet[Category] = frozenset(
            g for g in grants if isinstance(g, Category)
        )
        self._capabilities: FrozenSet[Capability] = frozenset(
            g for g in grants if isinstance(g, Capability)
        )

    @classmethod
    def from_keys(cls, keys: Optional[Iterable]) -> "CapabilitySet":
        """
        Build a set from stored feature strings.

        Entries that are not parseable grants are skipped with a warning so
        that one bad row never widens or breaks access for a plan.
        """
        grants: List[Grant] = []
        for raw in keys or ():
            try:
                grants.append(parse_grant(raw))
            except ValueError:
                logger.warning("Skipping malformed feature grant", extra={"grant": repr(raw)})
        return cls(grants)

    @property
    def is_unrestricted(self) -> bool:
        return self._wildcard

    def grants(self, capability: Capability) -> bool:
        """Wildcard, then exact key, then the key's category."""
        if self._wildcard:
            return True
        if capability in self._capabilities:
            return True
        return capability.category in self._categories

    def covers_category(self, category: Category) -> bool:
        """True if any capability in the category is granted."""
        if self._wildcard or category in self._categories:
            return True
        return any(c.category == category for c in self._capabilities)

    def __len__(self) -> int:
        return int(self._wildcard) + len(self._categories) + len(self._capabilities)


def plan_has_feature(plan, feature_key: str) -> bool:
    """
    Whether a plan grants a capability.

    A missing plan, a plan without a feature list, or a malformed key is
    a denial, never an error.
    """
    if plan is None or not getattr(plan, "features", None):
        return False
    try:
        capability = parse_capability(feature_key)
    except ValueError:
        return False
    return CapabilitySet.from_keys(plan.features).grants(capability)


def plan_has_category(plan, category: str) -> bool:
    """Whether a plan grants at least one capability in a category."""
    if plan is None or not getattr(plan, "features", None) or not category:
        return False
    return CapabilitySet.from_keys(plan.features).covers_category(Category(category))
