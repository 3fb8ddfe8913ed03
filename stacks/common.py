"""Shared constants and construct helpers for the e-commerce stacks."""

from typing import Any, Dict, Mapping, Optional

from constructs import Construct
from aws_cdk import (
    aws_cloudwatch as cloudwatch,
    aws_dynamodb as dynamodb,
    aws_events as events,
    aws_iam as iam,
    aws_lambda as lambda_,
    aws_logs as logs,
    aws_sns as sns,
    aws_sqs as sqs,
    Duration,
    RemovalPolicy,
)

from topology.access import LeadingKeysPolicy
from topology.definitions import (
    CONSUMER_TIMEOUT_SECONDS,
    AlarmSpec,
    FilterPolicySpec,
)

# Lambda configuration constants
FUNCTION_TIMEOUT_SECONDS = CONSUMER_TIMEOUT_SECONDS
FUNCTION_MEMORY_MB = 128
LAMBDA_ASSET_DIR = "lambdas"

# Logging configuration
LOG_RETENTION_DAYS = logs.RetentionDays.TWO_WEEKS

# DLQ configuration
DLQ_RETENTION_DAYS = 14


def name_suffix(scope: Construct) -> str:
    """Suffix appended to physical names so parallel deployments do not collide."""
    resource_suffix = scope.node.try_get_context("resource_suffix") or ""
    return f"-{resource_suffix}" if resource_suffix else ""


def python_function(
    scope: Construct,
    construct_id: str,
    function_name: str,
    handler: str,
    environment: Optional[Dict[str, str]] = None,
    memory_size: int = FUNCTION_MEMORY_MB,
    dead_letter_queue: Optional[sqs.IQueue] = None,
) -> lambda_.Function:
    """Create a Python handler from the lambdas asset with its own log group.

    Args:
        scope: The stack defining the function.
        construct_id: The scoped construct ID.
        function_name: Physical function name, before the resource suffix.
        handler: ``module.function`` inside the lambdas directory.
        environment: Environment variables for the function.
        memory_size: Memory in MB.
        dead_letter_queue: Receives asynchronous invocations that exhaust
            their retries.

    Returns:
        The function.
    """
    options: Dict[str, Any] = {}
    if dead_letter_queue is not None:
        options["dead_letter_queue_enabled"] = True
        options["dead_letter_queue"] = dead_letter_queue
    physical_name = f"{function_name}{name_suffix(scope)}"
    log_group = logs.LogGroup(
        scope,
        f"{construct_id}LogGroup",
        log_group_name=f"/aws/lambda/{physical_name}",
        retention=LOG_RETENTION_DAYS,
        removal_policy=RemovalPolicy.DESTROY,
    )
    return lambda_.Function(
        scope,
        construct_id,
        function_name=physical_name,
        runtime=lambda_.Runtime.PYTHON_3_12,
        architecture=lambda_.Architecture.ARM_64,
        handler=handler,
        code=lambda_.Code.from_asset(LAMBDA_ASSET_DIR),
        environment=environment or {},
        timeout=Duration.seconds(FUNCTION_TIMEOUT_SECONDS),
        memory_size=memory_size,
        tracing=lambda_.Tracing.ACTIVE,
        log_group=log_group,
        **options,
    )


def event_pattern(pattern: Mapping[str, Any]) -> events.EventPattern:
    """Convert an EventBridge JSON pattern into a CDK ``EventPattern``."""
    return events.EventPattern(
        source=pattern.get("source"),
        detail_type=pattern.get("detail-type"),
        detail=pattern.get("detail"),
    )


def subscription_filter_policy(
    policy: FilterPolicySpec,
) -> Dict[str, sns.SubscriptionFilter]:
    return {
        attribute: sns.SubscriptionFilter.string_filter(allowlist=list(values))
        for attribute, values in policy.items()
    }


def metric_options(spec: AlarmSpec) -> Dict[str, Any]:
    """Period, statistic and unit for a metric read by ``spec``."""
    options: Dict[str, Any] = {
        "period": Duration.minutes(spec.period_minutes),
        "statistic": spec.statistic.value,
    }
    if spec.unit:
        options["unit"] = getattr(cloudwatch.Unit, spec.unit.upper())
    return options


def create_alarm(
    scope: Construct, construct_id: str, spec: AlarmSpec, metric: cloudwatch.IMetric
) -> cloudwatch.Alarm:
    options: Dict[str, Any] = {}
    if spec.treat_missing_data is not None:
        options["treat_missing_data"] = getattr(
            cloudwatch.TreatMissingData, spec.treat_missing_data.name
        )
    return cloudwatch.Alarm(
        scope,
        construct_id,
        alarm_name=f"{spec.name}{name_suffix(scope)}",
        alarm_description=spec.description,
        metric=metric,
        threshold=spec.threshold,
        evaluation_periods=spec.evaluation_periods,
        comparison_operator=getattr(
            cloudwatch.ComparisonOperator, spec.comparison_operator.name
        ),
        actions_enabled=True,
        **options,
    )


def leading_keys_statement(
    policy: LeadingKeysPolicy, table: dynamodb.ITable
) -> iam.PolicyStatement:
    """Grant ``policy.actions`` on ``table`` for its partition-key prefixes only."""
    return iam.PolicyStatement(
        effect=iam.Effect.ALLOW,
        actions=list(policy.actions),
        resources=[table.table_arn],
        conditions=policy.condition(),
    )
