"""
Alias to dynamic label migration.

Legacy queries describe series names with an alias template such as
``"{{metric}} on {{InstanceId}}"``. Dynamic labels express the same thing
with ``${PROP('...')}`` and ``${LABEL}`` placeholders. The migration keeps
the alias untouched and fills in the label only when the caller has not
already set one.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, MutableMapping, Optional

logger = logging.getLogger(__name__)

_ALIAS_TOKEN_RE = re.compile(r"\{\{\s*(.+?)\s*\}\}")

RESERVED_TOKENS: Dict[str, str] = {
    "metric": "${PROP('MetricName')}",
    "namespace": "${PROP('Namespace')}",
    "period": "${PROP('Period')}",
    "region": "${PROP('Region')}",
    "stat": "${PROP('Stat')}",
    "label": "${LABEL}",
}

_LABEL_KEYS = ("label", "Label")
_ALIAS_KEYS = ("alias", "Alias")


def placeholder_for(token: str) -> str:
    """
    Return the dynamic label placeholder for one alias token.

    Examples
    --------
    >>> placeholder_for("metric")
    "${PROP('MetricName')}"
    >>> placeholder_for("InstanceId")
    "${PROP('Dim.InstanceId')}"
    """
    reserved = RESERVED_TOKENS.get(token)
    if reserved is not None:
        return reserved
    return "${PROP('Dim." + token + "')}"


def migrate_alias(alias: Optional[str]) -> str:
    """
    Rewrite a legacy alias template into a dynamic label template.

    Text outside ``{{ }}`` placeholders is preserved verbatim; whitespace
    inside a placeholder is ignored.

    Examples
    --------
    >>> migrate_alias("{{ metric }}")
    "${PROP('MetricName')}"
    >>> migrate_alias("some {{combination }}{{ label}} and {{metric}}")
    "some ${PROP('Dim.combination')}${LABEL} and ${PROP('MetricName')}"
    >>> migrate_alias("")
    ''
    """
    if not alias:
        return ""
    return _ALIAS_TOKEN_RE.sub(lambda m: placeholder_for(m.group(1)), alias)


def should_migrate(existing_label: Optional[str], feature_enabled: bool) -> bool:
    """Migrate only with the feature enabled and no caller-supplied label."""
    return feature_enabled and not existing_label


def _first_present(doc: MutableMapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if doc.get(key) is not None:
            return doc[key]
    return None


def migrate_legacy_query(
    query: MutableMapping[str, Any], dynamic_labels_enabled: bool
) -> MutableMapping[str, Any]:
    """Fill in ``label`` from ``alias`` on one raw query document, in place."""
    label = _first_present(query, _LABEL_KEYS)
    if not should_migrate(label, dynamic_labels_enabled):
        return query
    alias = _first_present(query, _ALIAS_KEYS)
    # Drop the legacy-cased key so only one label remains in the document.
    query.pop("Label", None)
    query["label"] = migrate_alias(alias if isinstance(alias, str) else "")
    logger.debug(
        "labels.migrated",
        extra={"ref_id": query.get("refId"), "label": query["label"]},
    )
    return query


def migrate_legacy_queries(
    queries: Iterable[MutableMapping[str, Any]], dynamic_labels_enabled: bool
) -> List[MutableMapping[str, Any]]:
    """Apply ``migrate_legacy_query`` to each document independently."""
    return [migrate_legacy_query(q, dynamic_labels_enabled) for q in queries]
