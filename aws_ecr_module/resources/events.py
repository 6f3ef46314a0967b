"""
EventBridge resource creation for the ECR repository module.

This module routes ECR events (image pushes, scan results) to SNS topics for
pull request rules and scan finding notifications, and to a CloudWatch log
group when repository logging is enabled.
"""

import hashlib
from typing import Any, Dict, List, Optional

from constructs import Construct
from aws_cdk import (
	RemovalPolicy,
	aws_events as events,
	aws_events_targets as targets,
	aws_logs as logs,
	aws_sns as sns,
)

from aws_ecr_module.resources.registry import FINDING_SEVERITIES
from aws_ecr_module.utils.pull_request_rules import (
	build_event_detail,
	build_scan_findings_detail,
	event_source_for_rule,
	scan_event,
	severities_at_or_above,
	tag_field_for_rule,
)

RULE_NAME_MAX_LENGTH = 64

LOG_RETENTION_DAYS = {
	1: logs.RetentionDays.ONE_DAY,
	3: logs.RetentionDays.THREE_DAYS,
	5: logs.RetentionDays.FIVE_DAYS,
	7: logs.RetentionDays.ONE_WEEK,
	14: logs.RetentionDays.TWO_WEEKS,
	30: logs.RetentionDays.ONE_MONTH,
	60: logs.RetentionDays.TWO_MONTHS,
	90: logs.RetentionDays.THREE_MONTHS,
	120: logs.RetentionDays.FOUR_MONTHS,
	150: logs.RetentionDays.FIVE_MONTHS,
	180: logs.RetentionDays.SIX_MONTHS,
	365: logs.RetentionDays.ONE_YEAR,
	400: logs.RetentionDays.THIRTEEN_MONTHS,
	545: logs.RetentionDays.EIGHTEEN_MONTHS,
	731: logs.RetentionDays.TWO_YEARS,
	1827: logs.RetentionDays.FIVE_YEARS,
	3653: logs.RetentionDays.TEN_YEARS,
}


def _rule_name(repository_name: str, suffix: str) -> str:
	# EventBridge rule names allow up to 64 letters, digits, dots, hyphens and underscores
	prefix = repository_name.replace('/', '-')
	name = f'{prefix}-{suffix}'
	if len(name) <= RULE_NAME_MAX_LENGTH:
		return name

	# Shortened names carry a digest of the full name
	digest = hashlib.sha256(name.encode()).hexdigest()[:8]
	tail = f'-{digest}-{suffix}'
	if len(tail) >= RULE_NAME_MAX_LENGTH:
		return f'{name[: RULE_NAME_MAX_LENGTH - len(digest) - 1]}-{digest}'
	return f'{prefix[: RULE_NAME_MAX_LENGTH - len(tail)]}{tail}'


def create_pull_request_rule(
	scope: Construct,
	repository_name: str,
	rule: Dict[str, Any],
	sns_topic: sns.ITopic,
	repository_arn: Optional[str] = None,
	enhanced_scanning: bool = False,
) -> events.Rule:
	"""
	Create the EventBridge rule backing a pull request rule.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository
	    rule: A normalized pull request rule
	    sns_topic: The SNS topic notified when the rule matches
	    repository_arn: ARN of the repository, matched by enhanced scan events
	    enhanced_scanning: Whether scan results come from Amazon Inspector

	Returns:
	    The EventBridge rule
	"""
	source, detail_type = event_source_for_rule(rule, enhanced_scanning)
	repository = repository_name
	if rule['type'] == 'security_scan' and enhanced_scanning:
		if not repository_arn:
			raise ValueError('repository_arn is required to match enhanced scan findings')
		repository = repository_arn

	tag_field = tag_field_for_rule(rule)

	event_rule = events.Rule(
		scope,
		f'PullRequestRule-{rule["name"]}',
		rule_name=_rule_name(repository_name, f'pr-{rule["name"]}'),
		description=f'{rule["type"]} pull request rule {rule["name"]} for {repository_name}',
		enabled=rule['enabled'],
		event_pattern=events.EventPattern(
			source=[source],
			detail_type=[detail_type],
			detail=build_event_detail(rule, repository, enhanced_scanning),
		),
	)

	event_rule.add_target(
		targets.SnsTopic(
			sns_topic,
			message=events.RuleTargetInput.from_object(
				{
					'rule': rule['name'],
					'type': rule['type'],
					'repository': repository_name,
					tag_field.replace('-', '_'): events.EventField.from_path(f'$.detail.{tag_field}'),
					'image_digest': events.EventField.from_path('$.detail.image-digest'),
					'require_approval_count': rule['actions']['require_approval_count'],
					'block_on_failure': rule['actions']['block_on_failure'],
				}
			),
		)
	)

	return event_rule


def create_scan_findings_rule(
	scope: Construct,
	repository_name: str,
	severities: List[str],
	sns_topic: sns.ITopic,
	repository_arn: Optional[str] = None,
	enhanced_scanning: bool = False,
) -> events.Rule:
	"""
	Create a rule notifying the SNS topic of scan findings at the given severities.

	Basic scan results are ECR events keyed by repository name. Enhanced scan
	results are Amazon Inspector events keyed by repository ARN.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository
	    severities: Severities that trigger a notification
	    sns_topic: The SNS topic to notify
	    repository_arn: ARN of the repository, required for enhanced scanning
	    enhanced_scanning: Whether findings come from Amazon Inspector

	Returns:
	    The EventBridge rule
	"""
	if enhanced_scanning and not repository_arn:
		raise ValueError('repository_arn is required to match enhanced scan findings')

	event = scan_event(enhanced_scanning)
	event_rule = events.Rule(
		scope,
		'ScanFindingsRule',
		rule_name=_rule_name(repository_name, 'scan-findings'),
		description=f'Scan findings for {repository_name}',
		event_pattern=events.EventPattern(
			source=[event['source']],
			detail_type=[event['detail_type']],
			detail=build_scan_findings_detail(
				repository_arn if enhanced_scanning else repository_name, severities, enhanced_scanning
			),
		),
	)
	event_rule.add_target(targets.SnsTopic(sns_topic))

	return event_rule


def severities_from_filters(values: List[str]) -> List[str]:
	"""Expand severity filter values into the severities that should notify."""
	if not values:
		return severities_at_or_above('HIGH')
	return [severity for severity in FINDING_SEVERITIES if severity in values]


def create_repository_logging(
	scope: Construct, repository_name: str, retention_days: int = 30
) -> logs.LogGroup:
	"""
	Create a log group receiving all ECR events of the repository.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository
	    retention_days: Log retention in days

	Returns:
	    The CloudWatch log group
	"""
	if retention_days not in LOG_RETENTION_DAYS:
		valid = ', '.join(str(days) for days in LOG_RETENTION_DAYS)
		raise ValueError(f'log_retention_days must be one of {valid}, got {retention_days}')
	retention = LOG_RETENTION_DAYS[retention_days]

	log_group = logs.LogGroup(
		scope,
		'RepositoryLogGroup',
		log_group_name=f'/aws/events/ecr/{repository_name}',
		retention=retention,
		removal_policy=RemovalPolicy.DESTROY,
	)

	events.Rule(
		scope,
		'RepositoryEventsRule',
		rule_name=_rule_name(repository_name, 'events'),
		description=f'All ECR events for {repository_name}',
		event_pattern=events.EventPattern(
			source=['aws.ecr'],
			detail={'repository-name': [repository_name]},
		),
	).add_target(targets.CloudWatchLogGroup(log_group))

	return log_group
