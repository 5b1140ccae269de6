"""Shared test fixtures."""

import copy
from datetime import UTC, datetime

import pytest

from driftguard.models import (
    DriftAvoidanceConfig,
    IdentifierMap,
    IdentifierMapping,
    MappingMetadata,
    ResourceTree,
)
from driftguard.store import IdentifierMapStore

FIXED_TIME = datetime(2026, 2, 25, 13, 30, 0, tzinfo=UTC)


@pytest.fixture
def store():
    return IdentifierMapStore()


@pytest.fixture
def make_mapping():
    """Build an exact-match mapping with fixed metadata."""

    def _make(new_id, original_id, resource_type="AWS::Lambda::Function", **kwargs):
        kwargs.setdefault("component_name", "api")
        kwargs.setdefault("component_type", "lambda-api")
        kwargs.setdefault("metadata", MappingMetadata(created_at=FIXED_TIME, updated_at=FIXED_TIME))
        return IdentifierMapping(
            original_id=original_id,
            new_id=new_id,
            resource_type=resource_type,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_map():
    """Build an IdentifierMap keyed by each mapping's new_id."""

    def _make(*mappings, stack_name="TestStack", environment="dev", **config):
        return IdentifierMap(
            stack_name=stack_name,
            environment=environment,
            created_at=FIXED_TIME,
            updated_at=FIXED_TIME,
            mappings={m.new_id: m for m in mappings},
            drift_avoidance_config=DriftAvoidanceConfig(**config),
        )

    return _make


SERVICE_TEMPLATE = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Parameters": {"Stage": {"Type": "String"}},
    "Resources": {
        "ApiFunctionServiceRole1A2B3C4D": {
            "Type": "AWS::IAM::Role",
            "Properties": {"RoleName": {"Fn::Sub": "${AWS::StackName}-api"}},
        },
        "ApiFunction5E6F7A8B": {
            "Type": "AWS::Lambda::Function",
            "Properties": {
                "Role": {"Fn::GetAtt": ["ApiFunctionServiceRole1A2B3C4D", "Arn"]},
                "Environment": {
                    "Variables": {
                        "TABLE_NAME": {"Ref": "OrdersTable9C0D1E2F"},
                        "BUCKET_ARN": {"Fn::GetAtt": "UploadsBucket3A4B5C6D.Arn"},
                        "STAGE": {"Ref": "Stage"},
                    }
                },
            },
            "DependsOn": ["ApiFunctionServiceRole1A2B3C4D"],
        },
        "OrdersTable9C0D1E2F": {
            "Type": "AWS::DynamoDB::Table",
            "Properties": {"BillingMode": "PAY_PER_REQUEST"},
            "DeletionPolicy": "Retain",
        },
        "UploadsBucket3A4B5C6D": {
            "Type": "AWS::S3::Bucket",
            "Properties": {},
        },
    },
    "Outputs": {
        "TableName": {"Value": {"Ref": "OrdersTable9C0D1E2F"}},
    },
}


@pytest.fixture
def service_tree():
    return ResourceTree.from_dict(SERVICE_TEMPLATE)


@pytest.fixture
def service_template():
    return copy.deepcopy(SERVICE_TEMPLATE)
