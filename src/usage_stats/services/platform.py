"""Client platform detection from free-text user agents.

Two independent heuristics are kept because the two retention metrics were
defined against different ones, and changing either would silently change
historical numbers:

- ``LEGACY`` looks for the platform name anywhere in the user agent.
- ``V2`` only trusts platform hints from first-party clients (user agents
  containing ``riot`` or ``element``) and treats any other browser as web.

Each heuristic is a tuple of :class:`PlatformRule` objects evaluated in
order, first match wins. The same rules are used both by :func:`classify`
and by :func:`platform_expression`, which renders them as a SQL ``CASE`` so
that retention queries can group by platform inside the database.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from sqlalchemy import ColumnElement, case, func, literal, or_


class Platform(enum.StrEnum):
    """Platform tag assigned to a client."""

    ANDROID = "android"
    IOS = "ios"
    ELECTRON = "electron"
    WEB = "web"
    UNKNOWN = "unknown"


class PlatformVariant(enum.Enum):
    """Which heuristic to apply."""

    LEGACY = "legacy"
    V2 = "v2"


@dataclass(frozen=True)
class PlatformRule:
    """Match any of ``patterns`` (lowercase substrings).

    A matching rule resolves to ``platform``, or, when ``children`` is set,
    to the first matching child rule (``unknown`` if none match).
    """

    patterns: tuple[str, ...]
    platform: Platform = Platform.UNKNOWN
    children: tuple[PlatformRule, ...] = ()


_BROWSER = PlatformRule(("mozilla", "gecko"), Platform.WEB)

RULES: dict[PlatformVariant, tuple[PlatformRule, ...]] = {
    PlatformVariant.LEGACY: (
        PlatformRule(("android",), Platform.ANDROID),
        PlatformRule(("ios",), Platform.IOS),
        PlatformRule(("electron",), Platform.ELECTRON),
        _BROWSER,
    ),
    PlatformVariant.V2: (
        PlatformRule(
            ("riot", "element"),
            children=(
                PlatformRule(("electron",), Platform.ELECTRON),
                PlatformRule(("android",), Platform.ANDROID),
                PlatformRule(("ios",), Platform.IOS),
            ),
        ),
        _BROWSER,
    ),
}


def _match(rules: tuple[PlatformRule, ...], lowered: str) -> Platform:
    for rule in rules:
        if any(pattern in lowered for pattern in rule.patterns):
            if rule.children:
                return _match(rule.children, lowered)
            return rule.platform
    return Platform.UNKNOWN


def classify(user_agent: str | None, variant: PlatformVariant) -> Platform:
    """Return the platform tag for a user agent.

    Never raises: ``None``, empty or unrecognised input yields
    :attr:`Platform.UNKNOWN`.
    """
    if not user_agent:
        return Platform.UNKNOWN
    return _match(RULES[variant], user_agent.lower())


def _case(rules: tuple[PlatformRule, ...], lowered: ColumnElement[str]) -> ColumnElement[str]:
    whens = []
    for rule in rules:
        condition = or_(*(lowered.like(f"%{pattern}%") for pattern in rule.patterns))
        if rule.children:
            outcome = _case(rule.children, lowered)
        else:
            outcome = literal(rule.platform.value)
        whens.append((condition, outcome))
    return case(*whens, else_=literal(Platform.UNKNOWN.value))


def platform_expression(
    column: ColumnElement[str | None], variant: PlatformVariant
) -> ColumnElement[str]:
    """Build a SQL expression that classifies ``column`` like :func:`classify`.

    NULL user agents fall through every ``LIKE`` and end up ``unknown``.
    """
    return _case(RULES[variant], func.lower(column))
