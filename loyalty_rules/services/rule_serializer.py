import json
from typing import Any

from pydantic import ValidationError

from loyalty_rules.schemas.rule import Rule


class RuleDocumentError(ValueError):
    """Stored or submitted rule document does not describe a valid Rule."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


def serialize_rule(rule: Rule) -> dict[str, Any]:
    return rule.model_dump(mode="json")


def deserialize_rule(document: Any) -> Rule:
    """Rebuild a Rule; unknown ``case``/``type`` tags and unknown fields are rejected."""
    if not isinstance(document, dict):
        raise RuleDocumentError("Rule document must be a JSON object")
    try:
        return Rule.model_validate(document)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())) or "rule",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        raise RuleDocumentError("Invalid rule document", errors=errors) from exc


def dumps_rule(rule: Rule) -> str:
    return json.dumps(serialize_rule(rule), sort_keys=True)


def loads_rule(text: str) -> Rule:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RuleDocumentError(f"Rule document is not valid JSON: {exc.msg}") from exc
    return deserialize_rule(document)
