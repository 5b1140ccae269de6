"""Build an identifier map when an existing stack is adopted by the platform."""

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from driftguard.errors import ValidationError
from driftguard.models import IdentifierMap

# Suffix the platform appends to a component's name, by component type and
# resource type.
COMPONENT_SUFFIXES: dict[str, dict[str, str]] = {
    "lambda-api": {
        "AWS::Lambda::Function": "Function",
        "AWS::IAM::Role": "ServiceRole",
        "AWS::Logs::LogGroup": "LogGroup",
        "AWS::ApiGateway::RestApi": "Api",
        "AWS::Lambda::Permission": "Permission",
    },
    "lambda-worker": {
        "AWS::Lambda::Function": "Function",
        "AWS::IAM::Role": "ServiceRole",
        "AWS::Logs::LogGroup": "LogGroup",
    },
    "rds-postgres": {
        "AWS::RDS::DBInstance": "Database",
        "AWS::RDS::DBSubnetGroup": "SubnetGroup",
        "AWS::EC2::SecurityGroup": "SecurityGroup",
        "AWS::SecretsManager::Secret": "Secret",
    },
    "sqs-queue": {
        "AWS::SQS::Queue": "Queue",
        "AWS::SQS::QueuePolicy": "QueuePolicy",
    },
    "s3-bucket": {
        "AWS::S3::Bucket": "Bucket",
        "AWS::S3::BucketPolicy": "BucketPolicy",
    },
}

# CDK appends an eight character hash to synthesized identifiers.
HASH_SUFFIX = re.compile(r"[A-Z0-9]{8}$")


class NamingMatch(StrEnum):
    """How a deployed identifier relates to the one the platform would synthesize."""

    EXACT = "exact-match"
    HASH_SUFFIX = "hash-suffix"
    NAMING_CONVENTION = "naming-convention"


@dataclass(frozen=True)
class ComponentAssignment:
    """The platform component a deployed resource now belongs to."""

    component_name: str
    component_type: str


@dataclass(frozen=True)
class AdoptionResult:
    identifier_map: IdentifierMap
    naming_matches: dict[NamingMatch, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


def normalize_component_name(name: str) -> str:
    """``orders-api`` -> ``OrdersApi``."""
    return "".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def resource_suffix(component_type: str, resource_type: str) -> str:
    suffix = COMPONENT_SUFFIXES.get(component_type, {}).get(resource_type)
    if suffix:
        return suffix
    return resource_type.split("::")[-1] or "Resource"


def expected_new_id(assignment: ComponentAssignment, resource_type: str) -> str:
    """The identifier the platform synthesizes for a resource of ``assignment``."""
    return normalize_component_name(assignment.component_name) + resource_suffix(
        assignment.component_type, resource_type
    )


def classify_naming(original_id: str, new_id: str) -> NamingMatch:
    if original_id == new_id:
        return NamingMatch.EXACT
    if HASH_SUFFIX.search(original_id):
        return NamingMatch.HASH_SUFFIX
    return NamingMatch.NAMING_CONVENTION


def assignments_from_dict(data: Any) -> dict[str, ComponentAssignment]:
    """Parse ``{originalId: {"componentName": ..., "componentType": ...}}``."""
    if not isinstance(data, dict):
        raise ValidationError("Component assignments must be a JSON object")
    assignments = {}
    for original_id, entry in data.items():
        if not isinstance(entry, dict):
            raise ValidationError(f"Invalid component assignment for {original_id}")
        name = entry.get("componentName")
        component_type = entry.get("componentType")
        if not isinstance(name, str) or not name or not isinstance(component_type, str):
            raise ValidationError(f"Invalid component assignment for {original_id}")
        assignments[original_id] = ComponentAssignment(
            component_name=name, component_type=component_type
        )
    return assignments
