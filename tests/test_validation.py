"""Unit tests for validation.py - JSON schema validation of specs."""

import pytest
from jsonschema import Draft7Validator

from validation import SPEC_SCHEMAS, get_spec_schema, validate_spec_against_schema


class TestBuiltinSchemas:
    """The bundled spec schemas are themselves valid Draft 7 schemas."""

    @pytest.mark.parametrize("kind", sorted(SPEC_SCHEMAS))
    def test_builtin_schemas_are_valid(self, kind):
        Draft7Validator.check_schema(SPEC_SCHEMAS[kind])


class TestGetSpecSchema:
    def test_known_kinds(self):
        for kind in ("RabbitVhost", "RabbitUser", "RabbitQueue"):
            assert get_spec_schema(kind) is SPEC_SCHEMAS[kind]

    def test_unknown_kind(self):
        assert get_spec_schema("RabbitExchange") is None


class TestVhostSchema:
    schema = SPEC_SCHEMAS["RabbitVhost"]

    def test_empty_spec(self):
        assert validate_spec_against_schema({}, self.schema) == (True, None)

    def test_full_spec(self):
        spec = {
            "vhostName": "testing",
            "skipUser": False,
            "policies": {
                "ha": {
                    "pattern": ".*",
                    "applyTo": "queues",
                    "priority": 1,
                    "definition": {"ha-mode": "all"},
                }
            },
            "connection": {
                "protocol": "amqps",
                "host": "rabbit",
                "port": 15671,
                "username": "admin",
                "passwordSecretRef": {"name": "rabbit-admin", "key": "pw"},
                "insecureSkipVerify": True,
            },
        }
        assert validate_spec_against_schema(spec, self.schema) == (True, None)

    def test_policy_requires_pattern(self):
        is_valid, error = validate_spec_against_schema(
            {"policies": {"ha": {"definition": {}}}}, self.schema
        )
        assert is_valid is False
        assert "policies.ha: 'pattern' is a required property" in error

    def test_unknown_field(self):
        is_valid, error = validate_spec_against_schema({"vhost": "x"}, self.schema)
        assert is_valid is False
        assert "(root)" in error

    def test_bad_protocol_and_port(self):
        is_valid, error = validate_spec_against_schema(
            {"connection": {"protocol": "http", "port": 70000}}, self.schema
        )
        assert is_valid is False
        # Every error is reported
        assert "connection.port" in error
        assert "connection.protocol" in error
        assert "; " in error

    def test_secret_ref_requires_name(self):
        is_valid, error = validate_spec_against_schema(
            {"connection": {"passwordSecretRef": {"key": "password"}}}, self.schema
        )
        assert is_valid is False
        assert "'name' is a required property" in error


class TestUserSchema:
    schema = SPEC_SCHEMAS["RabbitUser"]

    def test_valid(self):
        spec = {
            "tags": "monitoring",
            "permissions": [{"vhost": "*", "read": ".*"}],
            "outputVhost": False,
        }
        assert validate_spec_against_schema(spec, self.schema) == (True, None)

    def test_permission_requires_vhost(self):
        is_valid, error = validate_spec_against_schema(
            {"permissions": [{"read": ".*"}]}, self.schema
        )
        assert is_valid is False
        assert "permissions.0" in error

    def test_tags_must_be_a_string(self):
        is_valid, _ = validate_spec_against_schema(
            {"tags": ["administrator"]}, self.schema
        )
        assert is_valid is False


class TestQueueSchema:
    schema = SPEC_SCHEMAS["RabbitQueue"]

    def test_requires_vhost(self):
        is_valid, error = validate_spec_against_schema({}, self.schema)
        assert is_valid is False
        assert "'vhost' is a required property" in error

    def test_valid(self):
        spec = {
            "vhost": "jobs",
            "durable": True,
            "autoDelete": False,
            "arguments": {"x-max-priority": 10},
        }
        assert validate_spec_against_schema(spec, self.schema) == (True, None)

    def test_durable_must_be_boolean(self):
        is_valid, error = validate_spec_against_schema(
            {"vhost": "jobs", "durable": "yes"}, self.schema
        )
        assert is_valid is False
        assert error.startswith("durable:")
