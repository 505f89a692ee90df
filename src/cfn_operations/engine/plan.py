"""Change planning for apply and delete.

Planning is where an operation decides whether it needs to talk to the
remote system at all: an unchanged definition or an absent unit is settled
locally without submitting anything.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import yaml

from cfn_operations.config import PollingSettings
from cfn_operations.domain.models import ApplyOptions, DeleteOptions
from cfn_operations.domain.status import ActionKind, StackStatus, is_blocked_status
from cfn_operations.engine.retry import call_with_retry
from cfn_operations.errors import ConcurrentModificationError, ValidationError
from cfn_operations.gateway.base import NoChanges, RemoteGateway, Submission, UnitDescription

logger = logging.getLogger(__name__)

_UNIT_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9-]{0,127}$")


class _TemplateLoader(yaml.SafeLoader):
    """Safe YAML loader that tolerates intrinsic-function tags such as ``!Ref``."""


def _construct_tagged(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    if isinstance(node, yaml.ScalarNode):
        return {tag_suffix: loader.construct_scalar(node)}
    if isinstance(node, yaml.SequenceNode):
        return {tag_suffix: loader.construct_sequence(node, deep=True)}
    return {tag_suffix: loader.construct_mapping(node, deep=True)}


_TemplateLoader.add_multi_constructor("!", _construct_tagged)


@dataclass(frozen=True)
class Plan:
    """What an operation will do once it starts.

    Exactly one of ``submission`` and ``settled`` is set: either the remote
    system accepted an operation to track, or nothing needs to happen and the
    operation is already complete.
    """

    unit_name: str
    action: ActionKind
    submission: Submission | None = None
    settled: UnitDescription | None = None
    outputs: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.submission is None


def validate_unit_name(unit_name: str) -> str:
    if not isinstance(unit_name, str) or not _UNIT_NAME.match(unit_name):
        raise ValidationError(
            f"invalid unit name {unit_name!r}: must start with a letter and contain only "
            "letters, digits and hyphens (max 128 characters)"
        )
    return unit_name


def normalize_definition(definition: str | Mapping[str, Any]) -> str:
    """Check that ``definition`` is a template and return its body.

    Accepts a mapping (serialized to JSON) or a JSON/YAML document whose top
    level is a mapping with a ``Resources`` mapping.
    """
    if isinstance(definition, Mapping):
        document: Any = definition
        body = json.dumps(definition)
    elif isinstance(definition, str):
        if not definition.strip():
            raise ValidationError("definition is empty")
        try:
            document = yaml.load(definition, Loader=_TemplateLoader)
        except yaml.YAMLError as exc:
            raise ValidationError(f"definition is not valid JSON or YAML: {exc}") from exc
        body = definition
    else:
        raise ValidationError(
            f"definition must be a string or mapping, not {type(definition).__name__}"
        )

    if not isinstance(document, Mapping):
        raise ValidationError("definition must be a mapping at the top level")
    resources = document.get("Resources")
    if not isinstance(resources, Mapping) or not resources:
        raise ValidationError("definition must declare at least one resource under 'Resources'")
    return body


def validate_parameters(params: Mapping[str, Any] | None) -> dict[str, str]:
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise ValidationError("parameters must be a mapping of names to values")
    validated: dict[str, str] = {}
    for key, value in params.items():
        if not isinstance(key, str) or not key:
            raise ValidationError(f"invalid parameter name {key!r}")
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError(f"parameter {key} must be a string or number")
        validated[key] = str(value)
    return validated


def _check_not_blocked(unit: UnitDescription | None) -> None:
    if unit is not None and is_blocked_status(unit.status):
        raise ConcurrentModificationError(unit.unit_name, unit.status)


def _is_absent(unit: UnitDescription | None) -> bool:
    return unit is None or unit.status in (
        StackStatus.DELETE_COMPLETE.value,
        StackStatus.REVIEW_IN_PROGRESS.value,
    )


async def plan_apply(
    gateway: RemoteGateway,
    unit_name: str,
    definition: str,
    params: Mapping[str, str],
    options: ApplyOptions,
    settings: PollingSettings,
) -> Plan:
    unit = await call_with_retry(
        lambda: gateway.describe_unit(unit_name),
        settings=settings,
        what=f"describe {unit_name}",
    )
    _check_not_blocked(unit)
    action = ActionKind.CREATE if _is_absent(unit) else ActionKind.UPDATE

    # Submission steps are retried individually inside the gateway.
    result = await gateway.begin_create_or_update(
        unit_name, definition, params, action=action, options=options
    )
    if isinstance(result, NoChanges):
        logger.info("Unit %s is up to date; nothing to apply", unit_name)
        return Plan(
            unit_name=unit_name,
            action=ActionKind.NOOP,
            settled=unit,
            outputs=dict(unit.outputs) if unit is not None else {},
        )

    logger.info(
        "Submitted %s of %s (operation %s)", result.action.value, unit_name, result.operation_id
    )
    return Plan(unit_name=unit_name, action=result.action, submission=result)


async def plan_delete(
    gateway: RemoteGateway,
    unit_name: str,
    options: DeleteOptions,
    settings: PollingSettings,
) -> Plan:
    unit = await call_with_retry(
        lambda: gateway.describe_unit(unit_name),
        settings=settings,
        what=f"describe {unit_name}",
    )
    if unit is None or unit.status == StackStatus.DELETE_COMPLETE.value:
        logger.info("Unit %s does not exist; nothing to delete", unit_name)
        return Plan(unit_name=unit_name, action=ActionKind.NOOP, settled=unit)
    _check_not_blocked(unit)

    submission = await gateway.begin_delete(unit_name, options=options)
    logger.info("Submitted delete of %s (operation %s)", unit_name, submission.operation_id)
    return Plan(unit_name=unit_name, action=ActionKind.DELETE, submission=submission)
