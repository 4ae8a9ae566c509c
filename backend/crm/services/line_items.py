# Overview: Validation and construction of proposal/invoice line items from request payloads.

from __future__ import annotations

from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_line_item,
    validate_payload,
)


LINE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "quantity", "unit_price", "tax_rate", "discount"},
    required_on_create={"name", "quantity", "unit_price"},
)

# Read-only keys the dashboard echoes back from to_dict()
IGNORED_LINE_KEYS = {"id", "position", "line_total"}


def build_lines(line_model, items) -> list:
    """
    Validate a list of item payloads and return unsaved line rows.

    Positions follow list order. An empty list is allowed; totals are zero.
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    lines = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        payload = {k: v for k, v in raw.items() if k not in IGNORED_LINE_KEYS}
        try:
            patch = validate_payload(model=line_model, payload=payload, policy=LINE_ITEM_POLICY, partial=False)
            enforce_rules_line_item(patch)
        except ValidationError as exc:
            raise ValidationError(f"items[{idx}]: {exc}") from exc
        lines.append(line_model(position=idx, **patch))
    return lines


def copy_lines(source_lines, line_model) -> list:
    """Clone line rows into another document's line model."""
    return [
        line_model(
            name=line.name,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            tax_rate=line.tax_rate,
            discount=line.discount,
            position=line.position,
        )
        for line in source_lines
    ]
