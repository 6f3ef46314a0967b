"""
Notification-related resource creation for the ECR repository module.

This module provides functions for creating the SNS topic that receives
monitoring alarms and repository event notifications.
"""

from typing import List, Optional
from constructs import Construct
from aws_cdk import aws_sns as sns, aws_kms as kms


def create_alarm_topic(
	scope: Construct, topic_name: str, subscribers: List[str], kms_key: Optional[kms.IKey] = None
) -> sns.Topic:
	"""
	Create an SNS topic for alarms and subscribe all provided email addresses.

	Args:
	    scope: The CDK construct scope
	    topic_name: Name of the SNS topic
	    subscribers: List of email addresses to subscribe to the topic
	    kms_key: Optional KMS key for topic encryption

	Returns:
	    An SNS topic configured with email subscriptions
	"""
	topic = sns.Topic(
		scope=scope,
		id='AlarmTopic',
		display_name=topic_name,
		topic_name=topic_name,
		master_key=kms_key,
		enforce_ssl=True,
	)

	for i, email in enumerate(subscribers):
		sns.Subscription(
			scope=scope,
			id=f'EmailSubscription-{i}',
			topic=topic,
			protocol=sns.SubscriptionProtocol.EMAIL,
			endpoint=email,
		)

	return topic


def import_topic(scope: Construct, topic_id: str, topic_arn: str) -> sns.ITopic:
	"""Import an existing SNS topic by ARN."""
	return sns.Topic.from_topic_arn(scope, f'ImportedTopic-{topic_id}', topic_arn)
