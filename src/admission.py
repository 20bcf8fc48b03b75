"""
Admission - Defaulting and validating chain for resource specs.

Intercepts resource mutations before persistence. Mutating steps fill in
defaults first, then validating steps run in order and the first denial
stops the chain. Similar to Kubernetes admission controllers, but run
in-process for the kinds this operator owns.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from errors import ValidationError
from plugins.reconcilers.rabbitmq.models import KIND_QUEUE, KIND_USER, KIND_VHOST
from validation import get_spec_schema, validate_spec_against_schema

logger = logging.getLogger(__name__)

HA_MODES = ("all", "exactly", "nodes")


class AdmissionError(ValidationError):
    """Raised when an admission step denies a request."""


@dataclass
class AdmissionRequest:
    """A resource mutation awaiting admission."""

    operation: str
    kind: str
    name: str
    spec: Dict[str, Any] = field(default_factory=dict)
    namespace: str = "default"


Mutator = Callable[[AdmissionRequest], None]
Validator = Callable[[AdmissionRequest], None]


def default_name_field(spec_field: str) -> Mutator:
    """Build a mutator that defaults ``spec_field`` to the object name."""

    def mutate(request: AdmissionRequest) -> None:
        if not request.spec.get(spec_field):
            request.spec[spec_field] = request.name

    return mutate


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, bool, int, float))


def validate_schema(request: AdmissionRequest) -> None:
    schema = get_spec_schema(request.kind)
    if schema is None:
        raise AdmissionError(f"Unknown resource kind: {request.kind}")
    is_valid, error = validate_spec_against_schema(request.spec, schema)
    if not is_valid:
        raise AdmissionError(f"Invalid {request.kind} spec: {error}")


def validate_policies(request: AdmissionRequest) -> None:
    """Restrict policy definitions to scalar values and known HA modes."""
    for name, policy in (request.spec.get("policies") or {}).items():
        definition = policy.get("definition") or {}
        if not isinstance(definition, dict):
            raise AdmissionError(f"error parsing definition {name}: not an object")
        for key, value in definition.items():
            if key == "ha-mode":
                if not isinstance(value, str):
                    raise AdmissionError(
                        f"policy {name} ha-mode value is not a string: {value!r}"
                    )
                if value not in HA_MODES:
                    raise AdmissionError(
                        f"policy {name} ha-mode value is not a known HA mode: {value}"
                    )
            elif not _is_scalar(value):
                raise AdmissionError(
                    f"policy {name} {key} value is not a string, boolean, "
                    f"or number: {value!r}"
                )


def validate_permissions(request: AdmissionRequest) -> None:
    """Each vhost may appear once, and outputVhost needs exactly one entry."""
    permissions = request.spec.get("permissions") or []
    seen = set()
    for perm in permissions:
        vhost = perm.get("vhost")
        if vhost in seen:
            raise AdmissionError(f"Duplicate permissions for vhost {vhost}")
        seen.add(vhost)

    if request.spec.get("outputVhost") and len(permissions) != 1:
        raise AdmissionError(
            "outputVhost can only be used with permissions for exactly one vhost"
        )


def validate_arguments(request: AdmissionRequest) -> None:
    for key, value in (request.spec.get("arguments") or {}).items():
        if not _is_scalar(value):
            raise AdmissionError(f"argument {key} has an invalid value: {value!r}")


class AdmissionChain:
    """
    Orchestrates admission for each resource kind.

    Runs the kind's mutators first, then its validators, stopping on the
    first denial. Deletes are always admitted.
    """

    def __init__(
        self,
        mutators: Optional[Dict[str, List[Mutator]]] = None,
        validators: Optional[Dict[str, List[Validator]]] = None,
    ):
        self._mutators = mutators if mutators is not None else DEFAULT_MUTATORS
        self._validators = validators if validators is not None else DEFAULT_VALIDATORS

    def run(self, request: AdmissionRequest) -> Dict[str, Any]:
        """
        Run the admission chain for a request.

        Args:
            request: The admission request. Its spec is not modified.

        Returns:
            The defaulted spec.

        Raises:
            AdmissionError: If a validating step denies the request.
        """
        if request.operation == "DELETE":
            return request.spec

        request = AdmissionRequest(
            operation=request.operation,
            kind=request.kind,
            name=request.name,
            spec=copy.deepcopy(request.spec or {}),
            namespace=request.namespace,
        )
        logger.debug(
            f"Admitting {request.operation} of {request.kind} "
            f"{request.namespace}/{request.name}"
        )

        for mutate in self._mutators.get(request.kind, []):
            mutate(request)

        for validate in [validate_schema] + self._validators.get(request.kind, []):
            validate(request)

        return request.spec


DEFAULT_MUTATORS: Dict[str, List[Mutator]] = {
    KIND_VHOST: [default_name_field("vhostName")],
    KIND_USER: [default_name_field("username")],
    KIND_QUEUE: [default_name_field("queueName")],
}

DEFAULT_VALIDATORS: Dict[str, List[Validator]] = {
    KIND_VHOST: [validate_policies],
    KIND_USER: [validate_permissions],
    KIND_QUEUE: [validate_arguments],
}


def admit(
    kind: str,
    name: str,
    spec: Dict[str, Any],
    namespace: str = "default",
    operation: str = "CREATE",
) -> Dict[str, Any]:
    """Default and validate a spec with the built-in admission chain."""
    return AdmissionChain().run(
        AdmissionRequest(
            operation=operation,
            kind=kind,
            name=name,
            spec=spec,
            namespace=namespace,
        )
    )
