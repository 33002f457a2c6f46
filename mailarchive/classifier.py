"""Rule-based message typing and mailing-list tagging."""

from __future__ import annotations

import re
from collections.abc import Sequence

import structlog

from .config import MailingListRule, MessageField, TypeRule
from .models import DEFAULT_TYPE, Message

logger = structlog.get_logger()

_FIELD_ATTRIBUTES: dict[str, str] = {
    "from": "from_address",
    "to": "to",
    "cc": "cc",
    "subject": "subject",
}


def field_value(message: Message, name: MessageField) -> str:
    return getattr(message, _FIELD_ATTRIBUTES[name]) or ""


class TypeClassifier:
    """Assigns a type name from ordered :class:`TypeRule` entries.

    Within an entry the listed fields are OR-ed; entries of a rule are
    AND-ed; the first matching rule wins.  A rule literally named ``mail``
    is the implicit default and is never selected.  A rule whose regex does
    not compile is treated as non-matching.
    """

    def __init__(self, rules: Sequence[TypeRule]) -> None:
        self._rules = list(rules)

    def classify(self, message: Message) -> str:
        for rule in self._rules:
            if rule.name == DEFAULT_TYPE:
                continue
            try:
                matched = self._matches(rule, message)
            except re.error as exc:
                logger.warning("type_rule_invalid_pattern", rule=rule.name, error=str(exc))
                continue
            if matched:
                logger.debug("message_typed", message_id=message.message_id, type=rule.name)
                return rule.name
        return DEFAULT_TYPE

    @staticmethod
    def _matches(rule: TypeRule, message: Message) -> bool:
        for entry in rule.patterns:
            pattern = re.compile(entry.pattern)
            if not any(pattern.search(field_value(message, f)) for f in entry.fields):
                return False
        return True


class MailingListTagger:
    """Tags messages whose From, To or Cc header contains a list's substring."""

    def __init__(self, lists: Sequence[MailingListRule]) -> None:
        self._lists = list(lists)

    def tags_for(self, message: Message) -> list[str]:
        addresses = (message.from_address, message.to, message.cc)
        tags: list[str] = []
        for rule in self._lists:
            if rule.tag not in tags and any(rule.pattern in value for value in addresses):
                tags.append(rule.tag)
        return tags
