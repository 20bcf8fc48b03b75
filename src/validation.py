"""
Schema Validation - JSON schema validation of resource specs.

Each resource kind has a Draft 7 schema describing the shape of its spec.
Specs are checked against it before they are persisted.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

from plugins.reconcilers.rabbitmq.models import KIND_QUEUE, KIND_USER, KIND_VHOST

logger = logging.getLogger(__name__)

_SECRET_REF_SCHEMA = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "key": {"type": "string"},
    },
}

CONNECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "protocol": {"type": "string", "enum": ["", "amqp", "amqps"]},
        "host": {"type": "string"},
        "port": {"type": "integer", "minimum": 0, "maximum": 65535},
        "username": {"type": "string"},
        "passwordSecretRef": _SECRET_REF_SCHEMA,
        "vhost": {"type": "string"},
        "insecureSkipVerify": {"type": "boolean"},
    },
    "additionalProperties": False,
}

VHOST_SCHEMA = {
    "type": "object",
    "properties": {
        "vhostName": {"type": "string"},
        "skipUser": {"type": "boolean"},
        "policies": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["pattern"],
                "properties": {
                    "pattern": {"type": "string", "minLength": 1},
                    "applyTo": {"type": "string"},
                    "priority": {"type": "integer"},
                    "definition": {"type": "object"},
                },
                "additionalProperties": False,
            },
        },
        "connection": CONNECTION_SCHEMA,
    },
    "additionalProperties": False,
}

USER_SCHEMA = {
    "type": "object",
    "properties": {
        "username": {"type": "string"},
        "tags": {"type": "string"},
        "permissions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["vhost"],
                "properties": {
                    "vhost": {"type": "string", "minLength": 1},
                    "configure": {"type": "string"},
                    "write": {"type": "string"},
                    "read": {"type": "string"},
                },
                "additionalProperties": False,
            },
        },
        "outputVhost": {"type": "boolean"},
        "connection": CONNECTION_SCHEMA,
    },
    "additionalProperties": False,
}

QUEUE_SCHEMA = {
    "type": "object",
    "required": ["vhost"],
    "properties": {
        "queueName": {"type": "string"},
        "vhost": {"type": "string", "minLength": 1},
        "durable": {"type": "boolean"},
        "autoDelete": {"type": "boolean"},
        "arguments": {"type": "object"},
        "connection": CONNECTION_SCHEMA,
    },
    "additionalProperties": False,
}

SPEC_SCHEMAS: Dict[str, Dict[str, Any]] = {
    KIND_VHOST: VHOST_SCHEMA,
    KIND_USER: USER_SCHEMA,
    KIND_QUEUE: QUEUE_SCHEMA,
}


def get_spec_schema(kind: str) -> Optional[Dict[str, Any]]:
    """Return the spec schema for a resource kind, or None if unknown."""
    return SPEC_SCHEMAS.get(kind)


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource spec against a JSON Schema.

    Args:
        spec: The resource specification to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
        errors = sorted(
            validator.iter_errors(spec),
            key=lambda e: [str(p) for p in e.absolute_path],
        )

        if not errors:
            return True, None

        # Collect all validation errors
        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"
    except Exception as e:
        logger.error(f"Unexpected error during validation: {e}")
        return False, f"Validation failed: {str(e)}"
