"""Нормализация брокерских групп и сопоставление с правилами комиссии.

MT5 отдаёт группу как путь вида ``Bbook\\Standard\\USD``, причём разделитель
бывает и прямым, и обратным, а регистр плавает. Правила партнёра хранят
``group_id``/``group_name`` в том виде, в каком их ввёл админ. Любое
сопоставление группы с правилом в проекте идёт только через этот модуль.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Iterator

from loguru import logger

WILDCARD_KEY = "*"
BBOOK_SEGMENT = "bbook"
DEMO_MARKER = "demo"

_SEPARATORS = re.compile(r"[\\/]+")


def normalize_group(raw: object) -> str:
    if raw is None:
        return ""
    return str(raw).strip().lower()


def _full_keys(text: str) -> list[str]:
    return [text, text.replace("\\", "/"), text.replace("/", "\\")]


def _segments(text: str) -> list[str]:
    return [part.strip() for part in _SEPARATORS.split(text) if part.strip()]


def _derived_keys(segments: list[str]) -> list[str]:
    keys = []
    for index, segment in enumerate(segments[:-1]):
        if segment == BBOOK_SEGMENT:
            keys.append(segments[index + 1])
            break
    if segments:
        keys.append(segments[-1])
    return keys


def candidate_keys(raw: object) -> tuple[str, ...]:
    """Ключи в порядке убывания точности: полный путь, варианты, bbook, хвост."""

    text = normalize_group(raw)
    if not text:
        return ()
    ordered = _full_keys(text) + _derived_keys(_segments(text))
    return tuple(dict.fromkeys(ordered))


def derive_keys(raw: object) -> frozenset[str]:
    """Набор ключей поиска для сырой группы MT5."""

    return frozenset(candidate_keys(raw))


def is_demo(*labels: object) -> bool:
    """Демо-счёт/группа: любая метка содержит ``demo`` без учёта регистра."""

    return any(DEMO_MARKER in normalize_group(label) for label in labels if label)


@dataclass(frozen=True, slots=True)
class CommissionRule:
    """Одобренные условия партнёра для одной группы."""

    group_id: str
    usd_per_lot: Decimal
    spread_share_percentage: Decimal
    group_name: str | None = None
    structure_name: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.group_id == WILDCARD_KEY

    def same_terms(self, other: "CommissionRule") -> bool:
        return (
            self.usd_per_lot == other.usd_per_lot
            and self.spread_share_percentage == other.spread_share_percentage
        )


_AMBIGUOUS = object()


class RuleMap:
    """Карта ключ -> правило.

    Ключи из полного пути правила важнее производных (bbook/хвост). Производный
    ключ, на который претендуют правила с разными ставками, не используется:
    совпадение только по нему правила не даёт, сделке достанется ``*`` или ничего.
    Такие отказы пишутся в лог на уровне DEBUG.
    Правило ``*`` срабатывает только когда ничего другого не нашлось.
    """

    def __init__(self, rules: Iterable[CommissionRule] = ()) -> None:
        self._rules: list[CommissionRule] = []
        self._exact: dict[str, CommissionRule] = {}
        self._derived: dict[str, object] = {}
        self._wildcard: CommissionRule | None = None
        for rule in rules:
            self._add(rule)

    @classmethod
    def wildcard(cls, usd_per_lot: Decimal, spread_share_percentage: Decimal) -> "RuleMap":
        return cls(
            [
                CommissionRule(
                    group_id=WILDCARD_KEY,
                    usd_per_lot=usd_per_lot,
                    spread_share_percentage=spread_share_percentage,
                )
            ]
        )

    def _add(self, rule: CommissionRule) -> None:
        self._rules.append(rule)
        if rule.is_wildcard:
            self._wildcard = rule
            return
        for label in (rule.group_id, rule.group_name):
            text = normalize_group(label)
            if not text:
                continue
            for key in _full_keys(text):
                self._exact.setdefault(key, rule)
            for key in _derived_keys(_segments(text)):
                current = self._derived.get(key)
                if current is None:
                    self._derived[key] = rule
                elif current is not _AMBIGUOUS and not rule.same_terms(current):  # type: ignore[arg-type]
                    self._derived[key] = _AMBIGUOUS

    def match(self, raw_group: object) -> CommissionRule | None:
        """Правило для группы сделки/счёта или None (группа не назначена)."""

        keys = candidate_keys(raw_group)
        for key in keys:
            rule = self._exact.get(key)
            if rule is not None:
                return rule
        ambiguous = []
        for key in keys:
            rule = self._derived.get(key)
            if rule is _AMBIGUOUS:
                ambiguous.append(key)
            elif rule is not None:
                return rule  # type: ignore[return-value]
        if ambiguous:
            logger.debug(
                "Группа {group}: ключи {keys} неоднозначны, правило не выбрано",
                group=raw_group,
                keys=sorted(ambiguous),
            )
        return self._wildcard

    @property
    def ambiguous_keys(self) -> frozenset[str]:
        return frozenset(key for key, rule in self._derived.items() if rule is _AMBIGUOUS)

    def keys(self) -> frozenset[str]:
        keys = set(self._exact)
        keys.update(key for key, rule in self._derived.items() if rule is not _AMBIGUOUS)
        if self._wildcard is not None:
            keys.add(WILDCARD_KEY)
        return frozenset(keys)

    @property
    def rules(self) -> list[CommissionRule]:
        return list(self._rules)

    @property
    def has_wildcard(self) -> bool:
        return self._wildcard is not None

    def __iter__(self) -> Iterator[CommissionRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)


__all__ = [
    "BBOOK_SEGMENT",
    "CommissionRule",
    "RuleMap",
    "WILDCARD_KEY",
    "candidate_keys",
    "derive_keys",
    "is_demo",
    "normalize_group",
]
