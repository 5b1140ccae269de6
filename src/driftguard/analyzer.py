"""Replacement-risk classification for resources left with synthesized identifiers."""

import logging
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum

from driftguard.models import ResourceTree
from driftguard.rewriter import RewriteResult, SkipReason


class Severity(IntEnum):
    """Drift severity level. Higher value = more severe."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()


SEVERITY_MAP: dict[str, Severity] = {
    # Critical: databases, object and file storage, encryption keys
    "AWS::RDS::DBInstance": Severity.CRITICAL,
    "AWS::RDS::DBCluster": Severity.CRITICAL,
    "AWS::DynamoDB::Table": Severity.CRITICAL,
    "AWS::DynamoDB::GlobalTable": Severity.CRITICAL,
    "AWS::S3::Bucket": Severity.CRITICAL,
    "AWS::EFS::FileSystem": Severity.CRITICAL,
    "AWS::DocDB::DBCluster": Severity.CRITICAL,
    "AWS::Neptune::DBCluster": Severity.CRITICAL,
    "AWS::Redshift::Cluster": Severity.CRITICAL,
    "AWS::OpenSearchService::Domain": Severity.CRITICAL,
    "AWS::KMS::Key": Severity.CRITICAL,
    # High: durable queues, streams, caches and other data holders
    "AWS::SQS::Queue": Severity.HIGH,
    "AWS::Kinesis::Stream": Severity.HIGH,
    "AWS::ElastiCache::CacheCluster": Severity.HIGH,
    "AWS::ElastiCache::ReplicationGroup": Severity.HIGH,
    "AWS::SecretsManager::Secret": Severity.HIGH,
    "AWS::Cognito::UserPool": Severity.HIGH,
    "AWS::ECR::Repository": Severity.HIGH,
    "AWS::Logs::LogGroup": Severity.HIGH,
    "AWS::Backup::BackupVault": Severity.HIGH,
    # Medium: identity and network boundaries
    "AWS::IAM::Role": Severity.MEDIUM,
    "AWS::IAM::Policy": Severity.MEDIUM,
    "AWS::IAM::ManagedPolicy": Severity.MEDIUM,
    "AWS::EC2::SecurityGroup": Severity.MEDIUM,
    "AWS::EC2::VPC": Severity.MEDIUM,
    "AWS::EC2::Subnet": Severity.MEDIUM,
    "AWS::SNS::Topic": Severity.MEDIUM,
    "AWS::ElasticLoadBalancingV2::LoadBalancer": Severity.MEDIUM,
    # Low is the default for anything not listed
}


# Skipped mappings that need an operator decision.
REVIEWED_SKIPS = {SkipReason.TYPE_MISMATCH, SkipReason.COLLISION, SkipReason.CHAINED}


class ActionType(StrEnum):
    PRESERVE = "preserve"
    REVIEW = "review"


@dataclass(frozen=True)
class DriftEntry:
    """A resource that will keep a synthesized identifier."""

    resource_id: str
    resource_type: str
    severity: Severity
    reason: str


@dataclass(frozen=True)
class RecommendedAction:
    action_type: ActionType
    target: str
    detail: str


@dataclass(frozen=True)
class DriftSummary:
    total_resources: int
    mapped_resources: int
    unmapped_resources: int
    stateful_resources: int
    # Deployed stateful resources missing from the new tree; None without a
    # deployed template to compare against.
    deleted_resources: int | None = None


@dataclass(frozen=True)
class DriftReport:
    """Drift entries for one rewritten tree, with the overall risk."""

    detected_drifts: list[DriftEntry]
    risk_level: Severity
    summary: DriftSummary
    recommended_actions: list[RecommendedAction] = field(default_factory=list)
    preservation_issues: list[str] = field(default_factory=list)

    @property
    def unresolved(self) -> list[DriftEntry]:
        """High and critical entries that block a safe deployment."""
        return [d for d in self.detected_drifts if d.severity >= Severity.HIGH]


class DriftAnalyzer:
    """Flags every resource not covered by an applied mapping."""

    def __init__(
        self,
        severity_map: dict[str, Severity] | None = None,
        logger: logging.Logger | None = None,
    ):
        self._severity_map = SEVERITY_MAP if severity_map is None else severity_map
        self._logger = logger or logging.getLogger(__name__)

    def severity_for(self, resource_type: str) -> Severity:
        return self._severity_map.get(resource_type, Severity.LOW)

    def is_stateful(self, resource_type: str) -> bool:
        return self.severity_for(resource_type) >= Severity.HIGH

    def analyze(
        self,
        tree: ResourceTree,
        rewrite: RewriteResult | None = None,
        original_tree: ResourceTree | None = None,
    ) -> DriftReport:
        """Classify ``tree`` (normally the rewritten tree) against the applied mappings.

        With ``original_tree`` (the currently deployed template) every deployed
        stateful resource that the new tree no longer contains is reported as
        critical, since deploying deletes it. Mapped original IDs missing from
        the deployed template and resources whose type changes under the same
        identifier are reported as preservation issues.
        """
        preserved = {m.original_id for m in rewrite.applied} if rewrite else set()

        drifts: list[DriftEntry] = []
        stateful = 0
        for resource_id, resource in tree.items():
            if self.is_stateful(resource.type):
                stateful += 1
            if resource_id in preserved:
                continue
            severity = self.severity_for(resource.type)
            drifts.append(
                DriftEntry(
                    resource_id=resource_id,
                    resource_type=resource.type,
                    severity=severity,
                    reason=self._reason(resource_id, resource.type, severity),
                )
            )
            self._logger.debug(
                "Unmapped resource %s (%s): %s", resource_id, resource.type, severity.label
            )
        unmapped = len(drifts)

        deleted: int | None = None
        issues: list[tuple[str, str]] = []
        if original_tree is not None:
            removed = self._deleted_resources(tree, original_tree)
            deleted = len(removed)
            drifts.extend(removed)
            issues = self._preservation_issues(tree, original_tree, rewrite)

        risk_level = max((d.severity for d in drifts), default=Severity.LOW)

        report = DriftReport(
            detected_drifts=drifts,
            risk_level=risk_level,
            summary=DriftSummary(
                total_resources=len(tree),
                mapped_resources=len(tree) - unmapped,
                unmapped_resources=unmapped,
                stateful_resources=stateful,
                deleted_resources=deleted,
            ),
            recommended_actions=self._recommend(drifts, rewrite, issues),
            preservation_issues=[issue for _, issue in issues],
        )
        self._logger.info(
            "Drift analysis: %d of %d resources unmapped, risk %s",
            unmapped,
            len(tree),
            risk_level.label,
        )
        return report

    def _deleted_resources(
        self, tree: ResourceTree, original_tree: ResourceTree
    ) -> list[DriftEntry]:
        removed = []
        for resource_id, resource in original_tree.items():
            if resource_id in tree or not self.is_stateful(resource.type):
                continue
            removed.append(
                DriftEntry(
                    resource_id=resource_id,
                    resource_type=resource.type,
                    severity=Severity.CRITICAL,
                    reason=(
                        f"Deployed stateful resource {resource_id} ({resource.type}) is not "
                        "restored by any identifier mapping; deploying deletes it"
                    ),
                )
            )
            self._logger.debug("Deployed resource %s would be deleted", resource_id)
        return removed

    def _preservation_issues(
        self,
        tree: ResourceTree,
        original_tree: ResourceTree,
        rewrite: RewriteResult | None,
    ) -> list[tuple[str, str]]:
        issues = []
        for mapping in rewrite.applied if rewrite else []:
            if mapping.original_id not in original_tree:
                issues.append(
                    (
                        mapping.original_id,
                        f"Mapped original ID {mapping.original_id} for {mapping.new_id} "
                        "is not in the deployed template",
                    )
                )
        for resource_id, resource in original_tree.items():
            if resource_id in tree and tree[resource_id].type != resource.type:
                issues.append(
                    (
                        resource_id,
                        f"Resource {resource_id} changes type from {resource.type} to "
                        f"{tree[resource_id].type} and will be replaced",
                    )
                )
        return issues

    def _reason(self, resource_id: str, resource_type: str, severity: Severity) -> str:
        if severity >= Severity.HIGH:
            return (
                f"Stateful resource {resource_id} ({resource_type}) has no applied identifier "
                "mapping; replacing it destroys its data"
            )
        return (
            f"Resource {resource_id} ({resource_type}) keeps its synthesized identifier and "
            "will be replaced if it was deployed under another one"
        )

    def _recommend(
        self,
        drifts: list[DriftEntry],
        rewrite: RewriteResult | None,
        issues: list[tuple[str, str]],
    ) -> list[RecommendedAction]:
        ranked: list[tuple[Severity, RecommendedAction]] = []
        for drift in drifts:
            if drift.severity < Severity.HIGH:
                continue
            ranked.append(
                (
                    drift.severity,
                    RecommendedAction(
                        action_type=ActionType.PRESERVE,
                        target=drift.resource_id,
                        detail=(
                            f"Add an identifier mapping for {drift.resource_id} "
                            f"({drift.resource_type}) before deploying"
                        ),
                    ),
                )
            )

        for skipped in rewrite.skipped if rewrite else []:
            if skipped.reason not in REVIEWED_SKIPS:
                continue
            ranked.append(
                (
                    Severity.MEDIUM,
                    RecommendedAction(
                        action_type=ActionType.REVIEW,
                        target=skipped.mapping.new_id,
                        detail=skipped.detail,
                    ),
                )
            )

        for target, issue in issues:
            ranked.append(
                (
                    Severity.MEDIUM,
                    RecommendedAction(action_type=ActionType.REVIEW, target=target, detail=issue),
                )
            )

        # Highest severity first; ties keep tree order.
        return [action for _, action in sorted(ranked, key=lambda item: -item[0])]
