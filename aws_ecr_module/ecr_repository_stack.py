"""
ECR Repository Stack

This module defines the stack that provisions a single ECR repository together
with its optional features: lifecycle policy, repository policy, encryption,
scanning, replication, pull-through cache, monitoring alarms, pull request
rules, repository event logging and tagging.

Every stack publishes CloudFormation outputs describing what was created so the
integration tests can compare them with the state read back from AWS.
"""

import inspect
import json
import logging
from typing import Any, Dict, List, Optional

from aws_cdk import (
	CfnOutput,
	Stack,
	Tags,
	aws_kms as kms,
	aws_sns as sns,
)
from constructs import Construct
from cdk_nag import NagSuppressions

from aws_ecr_module.resources.alarms import create_monitoring_alarms
from aws_ecr_module.resources.ecr import (
	apply_lifecycle_policy,
	apply_repository_policy,
	create_ecr_repository,
)
from aws_ecr_module.resources.events import (
	create_pull_request_rule,
	create_repository_logging,
	create_scan_findings_rule,
	severities_from_filters,
)
from aws_ecr_module.resources.iam_roles import create_approval_role
from aws_ecr_module.resources.kms import create_key, import_key
from aws_ecr_module.resources.notifications import create_alarm_topic, import_topic
from aws_ecr_module.resources.registry import (
	create_pull_through_cache_rules,
	create_registry_scanning_configuration,
	create_replication_configuration,
	scan_filter_values,
	validate_scan_filters,
)
from aws_ecr_module.utils.config_utils import output_key, validate_repository_name
from aws_ecr_module.utils.lifecycle_policy import LIFECYCLE_TEMPLATES, resolve_lifecycle_policy
from aws_ecr_module.utils.pull_request_rules import summarize_pull_request_rules, validate_pull_request_rules
from aws_ecr_module.utils.tagging import TAG_KEY_CASES, resolve_tags

logger = logging.getLogger(__name__)

IMAGE_TAG_MUTABILITY_VALUES = ('MUTABLE', 'IMMUTABLE')
ENCRYPTION_TYPES = ('AES256', 'KMS')


class EcrRepositoryProps:
	"""
	Properties for the EcrRepositoryStack.

	Attributes mirror the keyword arguments of the constructor. Validation of
	enumerated values and thresholds happens here so that invalid settings fail
	before any construct is created.
	"""

	def __init__(
		self,
		*,
		name: str,
		image_tag_mutability: str = 'MUTABLE',
		scan_on_push: bool = True,
		force_delete: bool = False,
		prevent_destroy: bool = False,
		encryption_type: str = 'AES256',
		kms_key_arn: Optional[str] = None,
		kms_deletion_window_days: int = 7,
		kms_key_rotation: bool = True,
		policy: Optional[Any] = None,
		lifecycle_policy: Optional[Any] = None,
		lifecycle_policy_template: Optional[str] = None,
		lifecycle_expire_untagged_after_days: Optional[int] = None,
		lifecycle_keep_latest_n_images: Optional[int] = None,
		lifecycle_expire_tagged_after_days: Optional[int] = None,
		lifecycle_tag_prefixes_to_keep: Optional[List[str]] = None,
		tags: Optional[Dict[str, str]] = None,
		enable_default_tags: bool = True,
		default_tags_template: str = 'basic',
		default_tags_environment: Optional[str] = None,
		default_tags_owner: Optional[str] = None,
		default_tags_project: Optional[str] = None,
		default_tags_cost_center: Optional[str] = None,
		enable_tag_validation: bool = False,
		required_tags: Optional[List[str]] = None,
		enable_tag_normalization: bool = False,
		tag_key_case: str = 'PascalCase',
		normalize_tag_values: bool = True,
		enable_logging: bool = False,
		log_retention_days: int = 30,
		enable_replication: bool = False,
		replication_regions: Optional[List[str]] = None,
		enable_registry_scanning: bool = False,
		registry_scan_type: str = 'ENHANCED',
		enable_secret_scanning: bool = False,
		registry_scan_filters: Optional[List[Dict[str, Any]]] = None,
		enable_pull_through_cache: bool = False,
		pull_through_cache_rules: Optional[List[Dict[str, Any]]] = None,
		enable_monitoring: bool = False,
		monitoring_threshold_storage: float = 10,
		monitoring_threshold_api_calls: float = 1000,
		monitoring_threshold_image_push: float = 10,
		monitoring_threshold_image_pull: float = 100,
		monitoring_threshold_security_findings: float = 10,
		create_sns_topic: bool = True,
		sns_topic_name: Optional[str] = None,
		sns_topic_arn: Optional[str] = None,
		sns_topic_subscribers: Optional[List[str]] = None,
		enable_pull_request_rules: bool = False,
		pull_request_rules: Optional[List[Dict[str, Any]]] = None,
	):
		validate_repository_name(name)
		if image_tag_mutability not in IMAGE_TAG_MUTABILITY_VALUES:
			raise ValueError(f'image_tag_mutability must be one of {", ".join(IMAGE_TAG_MUTABILITY_VALUES)}')
		if encryption_type not in ENCRYPTION_TYPES:
			raise ValueError(f'encryption_type must be one of {", ".join(ENCRYPTION_TYPES)}')
		if lifecycle_policy_template is not None and lifecycle_policy_template not in LIFECYCLE_TEMPLATES:
			raise ValueError(f'lifecycle_policy_template must be one of {", ".join(LIFECYCLE_TEMPLATES)}')
		if tag_key_case not in TAG_KEY_CASES:
			raise ValueError(f'tag_key_case must be one of {", ".join(TAG_KEY_CASES)}')

		thresholds = {
			'monitoring_threshold_storage': monitoring_threshold_storage,
			'monitoring_threshold_api_calls': monitoring_threshold_api_calls,
			'monitoring_threshold_image_push': monitoring_threshold_image_push,
			'monitoring_threshold_image_pull': monitoring_threshold_image_pull,
			'monitoring_threshold_security_findings': monitoring_threshold_security_findings,
		}
		for threshold_name, threshold in thresholds.items():
			if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
				raise ValueError(f'{threshold_name} must be a number, got {threshold!r}')
			if threshold <= 0:
				raise ValueError(f'{threshold_name} must be greater than zero')

		self.name = name
		self.image_tag_mutability = image_tag_mutability
		self.scan_on_push = scan_on_push
		self.force_delete = force_delete
		self.prevent_destroy = prevent_destroy
		self.encryption_type = encryption_type
		self.kms_key_arn = kms_key_arn
		self.kms_deletion_window_days = kms_deletion_window_days
		self.kms_key_rotation = kms_key_rotation
		self.policy = policy
		self.lifecycle_policy = lifecycle_policy
		self.lifecycle_policy_template = lifecycle_policy_template
		self.lifecycle_expire_untagged_after_days = lifecycle_expire_untagged_after_days
		self.lifecycle_keep_latest_n_images = lifecycle_keep_latest_n_images
		self.lifecycle_expire_tagged_after_days = lifecycle_expire_tagged_after_days
		self.lifecycle_tag_prefixes_to_keep = list(lifecycle_tag_prefixes_to_keep or [])
		self.tags = dict(tags or {})
		self.enable_default_tags = enable_default_tags
		self.default_tags_template = default_tags_template
		self.default_tags_environment = default_tags_environment
		self.default_tags_owner = default_tags_owner
		self.default_tags_project = default_tags_project
		self.default_tags_cost_center = default_tags_cost_center
		self.enable_tag_validation = enable_tag_validation
		self.required_tags = list(required_tags or [])
		self.enable_tag_normalization = enable_tag_normalization
		self.tag_key_case = tag_key_case
		self.normalize_tag_values = normalize_tag_values
		self.enable_logging = enable_logging
		self.log_retention_days = log_retention_days
		self.enable_replication = enable_replication
		self.replication_regions = list(replication_regions or [])
		self.enable_registry_scanning = enable_registry_scanning
		self.registry_scan_type = registry_scan_type
		self.enable_secret_scanning = enable_secret_scanning
		self.registry_scan_filters = list(registry_scan_filters or [])
		self.enable_pull_through_cache = enable_pull_through_cache
		self.pull_through_cache_rules = list(pull_through_cache_rules or [])
		self.enable_monitoring = enable_monitoring
		self.monitoring_threshold_storage = monitoring_threshold_storage
		self.monitoring_threshold_api_calls = monitoring_threshold_api_calls
		self.monitoring_threshold_image_push = monitoring_threshold_image_push
		self.monitoring_threshold_image_pull = monitoring_threshold_image_pull
		self.monitoring_threshold_security_findings = monitoring_threshold_security_findings
		self.create_sns_topic = create_sns_topic
		self.sns_topic_name = sns_topic_name
		self.sns_topic_arn = sns_topic_arn
		self.sns_topic_subscribers = list(sns_topic_subscribers or [])
		self.enable_pull_request_rules = enable_pull_request_rules
		self.pull_request_rules = validate_pull_request_rules(pull_request_rules or [])
		validate_scan_filters(self.registry_scan_filters)

	@classmethod
	def from_config(cls, config: Dict[str, Any]) -> 'EcrRepositoryProps':
		"""
		Build props from a repository configuration dictionary.

		Args:
		    config: Repository configuration loaded from the settings file

		Returns:
		    EcrRepositoryProps

		Raises:
		    ValueError: If the configuration contains unknown keys
		"""
		allowed = set(inspect.signature(cls.__init__).parameters) - {'self'}
		unknown = sorted(set(config) - allowed)
		if unknown:
			raise ValueError(f'Unknown repository configuration keys: {", ".join(unknown)}')
		return cls(**config)

	@property
	def security_monitoring_enabled(self) -> bool:
		return self.scan_on_push or self.enable_registry_scanning

	@property
	def enhanced_scanning_enabled(self) -> bool:
		return self.enable_registry_scanning and self.registry_scan_type == 'ENHANCED'


class EcrRepositoryStack(Stack):
	"""
	Creates an ECR repository and its supporting resources.

	Resources are created conditionally based on the props:
	- ECR repository with tag mutability, scan on push and encryption
	- KMS key (created or imported) for KMS encryption
	- Repository policy and lifecycle policy
	- Registry scanning configuration, replication and pull-through cache rules
	- SNS topic and CloudWatch alarms for monitoring
	- EventBridge rules and an approval role for pull request rules
	- CloudWatch log group receiving repository events
	"""

	def __init__(
		self,
		scope: Construct,
		construct_id: str,
		*,
		props: EcrRepositoryProps,
		**kwargs: Any,
	) -> None:
		"""
		Initialize EcrRepositoryStack.

		Args:
		    scope (Construct): CDK construct scope
		    construct_id (str): CDK construct ID
		    props (EcrRepositoryProps): Properties for the stack
		    **kwargs (Any): Additional keyword arguments passed to the Stack constructor
		"""
		super().__init__(scope, construct_id, **kwargs)
		self.props = props
		self.sns_topic: Optional[sns.ITopic] = None
		self.sns_topic_created = False

		self.tagging = resolve_tags(
			tags=props.tags,
			enable_default_tags=props.enable_default_tags,
			default_tags_template=props.default_tags_template,
			default_tags_environment=props.default_tags_environment,
			default_tags_owner=props.default_tags_owner,
			default_tags_project=props.default_tags_project,
			default_tags_cost_center=props.default_tags_cost_center,
			enable_tag_normalization=props.enable_tag_normalization,
			tag_key_case=props.tag_key_case,
			normalize_tag_values=props.normalize_tag_values,
			enable_tag_validation=props.enable_tag_validation,
			required_tags=props.required_tags,
		)
		for key, value in self.tagging.applied_tags.items():
			Tags.of(self).add(key=key, value=value)

		self.kms_key: Optional[kms.IKey] = None
		if props.encryption_type == 'KMS':
			self.kms_key = import_key(self, props.kms_key_arn) or create_key(
				self,
				repository_name=props.name,
				deletion_window_days=props.kms_deletion_window_days,
				enable_key_rotation=props.kms_key_rotation,
				prevent_destroy=props.prevent_destroy,
			)

		self.repository = create_ecr_repository(
			self,
			repository_name=props.name,
			image_tag_mutability=props.image_tag_mutability,
			scan_on_push=props.scan_on_push,
			encryption_type=props.encryption_type,
			kms_key=self.kms_key,
			force_delete=props.force_delete,
			prevent_destroy=props.prevent_destroy,
		)

		if props.policy:
			apply_repository_policy(self.repository, props.policy)

		self.lifecycle_policy_source, self.lifecycle_policy_text = resolve_lifecycle_policy(
			lifecycle_policy=props.lifecycle_policy,
			template=props.lifecycle_policy_template,
			expire_untagged_after_days=props.lifecycle_expire_untagged_after_days,
			keep_latest_n_images=props.lifecycle_keep_latest_n_images,
			expire_tagged_after_days=props.lifecycle_expire_tagged_after_days,
			tag_prefixes_to_keep=props.lifecycle_tag_prefixes_to_keep,
		)
		if self.lifecycle_policy_text:
			apply_lifecycle_policy(self.repository, self.lifecycle_policy_text)

		self.registry_scanning = None
		if props.enable_registry_scanning:
			self.registry_scanning = create_registry_scanning_configuration(
				self,
				repository_name=props.name,
				scan_type=props.registry_scan_type,
				secret_scanning=props.enable_secret_scanning,
				scan_filters=props.registry_scan_filters,
			)

		self.pull_through_cache_rules = []
		if props.enable_pull_through_cache:
			self.pull_through_cache_rules = create_pull_through_cache_rules(self, props.pull_through_cache_rules)

		self.replication = None
		if props.enable_replication:
			self.replication = create_replication_configuration(self, props.name, props.replication_regions)

		self.alarms = {}
		if props.enable_monitoring:
			topic = self._notification_topic() if props.create_sns_topic or props.sns_topic_arn else None
			self.alarms = create_monitoring_alarms(
				self,
				repository_name=props.name,
				sns_topic=topic,
				storage_threshold_gb=props.monitoring_threshold_storage,
				api_calls_threshold=props.monitoring_threshold_api_calls,
				image_push_threshold=props.monitoring_threshold_image_push,
				image_pull_threshold=props.monitoring_threshold_image_pull,
				security_findings_threshold=props.monitoring_threshold_security_findings,
				enable_security_monitoring=props.security_monitoring_enabled,
			)
			if topic is not None and props.enable_registry_scanning:
				severities = severities_from_filters(
					scan_filter_values(props.registry_scan_filters, 'PACKAGE_VULNERABILITY_SEVERITY')
				)
				create_scan_findings_rule(
					self,
					props.name,
					severities,
					topic,
					repository_arn=self.repository.repository_arn,
					enhanced_scanning=props.enhanced_scanning_enabled,
				)

		self.approval_role = None
		self.pull_request_event_rules = []
		if props.enable_pull_request_rules:
			self._create_pull_request_rules()

		self.log_group = None
		if props.enable_logging:
			self.log_group = create_repository_logging(self, props.name, props.log_retention_days)

		self._create_outputs()
		self._add_nag_suppressions()

		logger.info(
			f'Configured repository {props.name} (lifecycle policy: {self.lifecycle_policy_source}, '
			f'monitoring: {props.enable_monitoring}, pull request rules: {len(self.pull_request_event_rules)})'
		)

	def _notification_topic(self) -> sns.ITopic:
		"""Return the stack's notification topic, creating or importing it on first use."""
		if self.sns_topic is None:
			if self.props.sns_topic_arn:
				self.sns_topic = import_topic(self, 'monitoring', self.props.sns_topic_arn)
			else:
				topic_name = self.props.sns_topic_name or f'{self.props.name.replace("/", "-")}-ecr-monitoring'
				self.sns_topic = create_alarm_topic(self, topic_name, self.props.sns_topic_subscribers)
				self.sns_topic_created = True
		return self.sns_topic

	def _create_pull_request_rules(self) -> None:
		self.approval_role = create_approval_role(self, self.props.name, self.repository)

		for rule in self.props.pull_request_rules:
			topic_arn = rule['actions']['notification_topic_arn']
			if topic_arn:
				topic = import_topic(self, f'rule-{rule["name"]}', topic_arn)
			else:
				topic = self._notification_topic()
			self.pull_request_event_rules.append(
				create_pull_request_rule(
					self,
					self.props.name,
					rule,
					topic,
					repository_arn=self.repository.repository_arn,
					enhanced_scanning=self.props.enhanced_scanning_enabled,
				)
			)

	def security_status(self) -> Dict[str, Any]:
		props = self.props
		return {
			'basic_scanning_enabled': props.scan_on_push,
			'enhanced_scanning_enabled': props.enhanced_scanning_enabled,
			'secret_scanning_enabled': props.enable_registry_scanning and props.enable_secret_scanning,
			'pull_through_cache_enabled': props.enable_pull_through_cache and bool(self.pull_through_cache_rules),
			'encryption_type': props.encryption_type,
			'image_tag_mutability': props.image_tag_mutability,
		}

	def registry_scanning_status(self) -> Dict[str, Any]:
		props = self.props
		return {
			'enabled': props.enable_registry_scanning,
			'scan_type': props.registry_scan_type if props.enable_registry_scanning else None,
			'secret_scanning_enabled': props.enable_registry_scanning and props.enable_secret_scanning,
		}

	def monitoring_status(self) -> Dict[str, Any]:
		props = self.props
		enabled = props.enable_monitoring
		return {
			'enabled': enabled,
			'sns_topic_created': self.sns_topic_created,
			'security_monitoring_enabled': enabled and props.security_monitoring_enabled,
			'storage_threshold_gb': props.monitoring_threshold_storage if enabled else None,
			'api_calls_threshold': props.monitoring_threshold_api_calls if enabled else None,
			'image_push_threshold': props.monitoring_threshold_image_push if enabled else None,
			'image_pull_threshold': props.monitoring_threshold_image_pull if enabled else None,
			'security_findings_threshold': props.monitoring_threshold_security_findings if enabled else None,
		}

	def _output(self, name: str, value: str, description: str) -> CfnOutput:
		return CfnOutput(self, output_key(name), value=value, description=description)

	def _create_outputs(self) -> None:
		props = self.props

		self._output('repository_name', self.repository.repository_name, 'Name of the ECR repository')
		self._output('repository_url', self.repository.repository_uri, 'URL of the ECR repository')
		self._output('repository_arn', self.repository.repository_arn, 'ARN of the ECR repository')
		self._output('registry_id', self.account, 'Registry (account) ID of the repository')
		self._output(
			'lifecycle_policy_json',
			self.lifecycle_policy_text or json.dumps(None),
			'Lifecycle policy applied to the repository',
		)
		self._output('lifecycle_policy_source', self.lifecycle_policy_source, 'Source of the lifecycle policy')
		self._output('security_status', json.dumps(self.security_status()), 'Security configuration summary')
		self._output(
			'registry_scanning_status', json.dumps(self.registry_scanning_status()), 'Registry scanning summary'
		)
		self._output('monitoring_status', json.dumps(self.monitoring_status()), 'Monitoring configuration summary')
		self._output('applied_tags', json.dumps(self.tagging.applied_tags), 'Tags applied to the resources')
		self._output('tagging_strategy', json.dumps(self.tagging.strategy), 'Tagging strategy in use')
		self._output(
			'tag_compliance_status', json.dumps(self.tagging.compliance_status), 'Required tag validation result'
		)

		if self.kms_key is not None:
			self._output('kms_key_arn', self.kms_key.key_arn, 'ARN of the repository encryption key')

		if self.sns_topic is not None:
			self._output('sns_topic_arn', self.sns_topic.topic_arn, 'ARN of the notification topic')

		if self.alarms:
			self._output(
				'cloudwatch_alarms',
				self.to_json_string({key: alarm.alarm_arn for key, alarm in self.alarms.items()}),
				'CloudWatch alarms keyed by purpose',
			)

		if props.enable_pull_request_rules:
			self._output('approval_role_arn', self.approval_role.role_arn, 'ARN of the pull request approval role')
			self._output(
				'pull_request_rules',
				self.to_json_string(
					{
						'enabled': True,
						'rules': summarize_pull_request_rules(props.pull_request_rules),
						'approval_role_arn': self.approval_role.role_arn,
					}
				),
				'Pull request rules summary',
			)

		if self.log_group is not None:
			self._output('log_group_name', self.log_group.log_group_name, 'Log group receiving repository events')

		if self.replication is not None:
			self._output(
				'replication_status',
				json.dumps({'enabled': True, 'regions': props.replication_regions}),
				'Replication configuration summary',
			)

	def _add_nag_suppressions(self) -> None:
		if self.sns_topic_created:
			NagSuppressions.add_resource_suppressions(
				self.sns_topic,
				[
					{
						'id': 'AwsSolutions-SNS2',
						'reason': 'The topic carries alarm state changes and ECR event metadata only',
					},
				],
			)
		if self.approval_role is not None:
			NagSuppressions.add_resource_suppressions(
				self.approval_role,
				[
					{
						'id': 'AwsSolutions-IAM5',
						'reason': 'ecr:GetAuthorizationToken does not support resource-level permissions',
						'applies_to': ['Resource::*'],
					},
				],
				apply_to_children=True,
			)
		# Emptying the repository on delete and routing events to the log group use CDK-provided handlers
		if self.props.force_delete or self.log_group is not None:
			NagSuppressions.add_stack_suppressions(
				self,
				[
					{
						'id': 'AwsSolutions-IAM4',
						'reason': 'CDK-generated custom resources require Lambda basic execution permissions',
						'applies_to': [
							'Policy::arn:<AWS::Partition>:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole'
						],
					},
					{
						'id': 'AwsSolutions-IAM5',
						'reason': 'CDK-generated custom resources manage log group resource policies account wide',
						'applies_to': ['Resource::*'],
					},
					{
						'id': 'AwsSolutions-L1',
						'reason': 'CDK-generated Lambda functions use predefined runtimes',
					},
				],
			)
