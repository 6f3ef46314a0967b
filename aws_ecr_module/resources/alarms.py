"""
Alarm-related resource creation for the ECR repository module.

This module provides functions for creating CloudWatch alarms on the
AWS/ECR metrics of a repository: storage usage, API calls, image pushes,
image pulls and high severity scan findings.
"""

from typing import Dict, Optional

from constructs import Construct
from aws_cdk import (
	Duration,
	aws_cloudwatch as cw,
	aws_cloudwatch_actions as cw_actions,
	aws_sns as sns,
)

ECR_NAMESPACE = 'AWS/ECR'
BYTES_PER_GB = 1024 * 1024 * 1024


def create_repository_metric(repository_name: str, metric_name: str, statistic: str = 'Sum') -> cw.Metric:
	"""
	Create a CloudWatch metric for a repository.

	Args:
	    repository_name: Name of the repository (RepositoryName dimension)
	    metric_name: Name of the AWS/ECR metric
	    statistic: Statistic to evaluate

	Returns:
	    The metric with a five minute period
	"""
	return cw.Metric(
		namespace=ECR_NAMESPACE,
		metric_name=metric_name,
		dimensions_map={'RepositoryName': repository_name},
		statistic=statistic,
		period=Duration.minutes(5),
	)


def create_repository_alarm(
	scope: Construct,
	alarm_id: str,
	repository_name: str,
	metric_name: str,
	threshold: float,
	description: str,
	sns_topic: Optional[sns.ITopic],
	statistic: str = 'Sum',
	evaluation_periods: int = 2,
) -> cw.Alarm:
	"""
	Create an alarm on a repository metric.

	The SNS topic, when given, is notified both when the alarm fires and
	when it returns to OK.

	Args:
	    scope: The CDK construct scope
	    alarm_id: Suffix used for the construct id and alarm name
	    repository_name: Name of the repository
	    metric_name: Name of the AWS/ECR metric
	    threshold: Alarm threshold
	    description: Alarm description
	    sns_topic: The SNS topic to notify
	    statistic: Statistic to evaluate
	    evaluation_periods: Number of periods the threshold must be breached

	Returns:
	    The CloudWatch alarm
	"""
	alarm = create_repository_metric(repository_name, metric_name, statistic).create_alarm(
		scope=scope,
		id=f'Alarm-{alarm_id}',
		alarm_name=f'{repository_name}-ecr-{alarm_id}',
		alarm_description=description,
		threshold=threshold,
		comparison_operator=cw.ComparisonOperator.GREATER_THAN_THRESHOLD,
		evaluation_periods=evaluation_periods,
		treat_missing_data=cw.TreatMissingData.NOT_BREACHING,
	)

	if sns_topic is not None:
		alarm.add_alarm_action(cw_actions.SnsAction(sns_topic))
		alarm.add_ok_action(cw_actions.SnsAction(sns_topic))

	return alarm


def create_monitoring_alarms(
	scope: Construct,
	repository_name: str,
	sns_topic: Optional[sns.ITopic],
	storage_threshold_gb: float = 10,
	api_calls_threshold: float = 1000,
	image_push_threshold: float = 10,
	image_pull_threshold: float = 100,
	security_findings_threshold: float = 10,
	enable_security_monitoring: bool = True,
) -> Dict[str, cw.Alarm]:
	"""
	Create the full set of monitoring alarms for a repository.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository
	    sns_topic: The SNS topic to notify
	    storage_threshold_gb: Repository size threshold in GB
	    api_calls_threshold: API calls per five minutes
	    image_push_threshold: Image pushes per five minutes
	    image_pull_threshold: Image pulls per five minutes
	    security_findings_threshold: High severity findings
	    enable_security_monitoring: Whether the security findings alarm is created

	Returns:
	    Dictionary of alarms keyed by their output name
	"""
	alarms = {
		'storage_usage_alarm': create_repository_alarm(
			scope,
			'storage-usage',
			repository_name,
			'RepositorySizeInBytes',
			storage_threshold_gb * BYTES_PER_GB,
			f'Repository {repository_name} storage exceeds {storage_threshold_gb} GB',
			sns_topic,
			statistic='Average',
		),
		'api_calls_alarm': create_repository_alarm(
			scope,
			'api-calls',
			repository_name,
			'ApiCallCount',
			api_calls_threshold,
			f'Repository {repository_name} API calls exceed {api_calls_threshold} per 5 minutes',
			sns_topic,
		),
		'image_push_alarm': create_repository_alarm(
			scope,
			'image-push',
			repository_name,
			'ImagePushCount',
			image_push_threshold,
			f'Repository {repository_name} image pushes exceed {image_push_threshold} per 5 minutes',
			sns_topic,
		),
		'image_pull_alarm': create_repository_alarm(
			scope,
			'image-pull',
			repository_name,
			'ImagePullCount',
			image_pull_threshold,
			f'Repository {repository_name} image pulls exceed {image_pull_threshold} per 5 minutes',
			sns_topic,
		),
	}

	if enable_security_monitoring:
		alarms['security_findings_alarm'] = create_repository_alarm(
			scope,
			'security-findings',
			repository_name,
			'HighSeverityVulnerabilityCount',
			security_findings_threshold,
			f'Repository {repository_name} has more than {security_findings_threshold} high severity findings',
			sns_topic,
			statistic='Maximum',
			evaluation_periods=1,
		)

	return alarms
