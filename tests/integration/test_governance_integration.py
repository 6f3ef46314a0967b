"""
Integration tests for monitoring, tagging and pull request rules.
"""

import os
import pytest

from aws_ecr_module.utils import aws_inspector
from aws_ecr_module.utils.cdk_runner import CdkCommandError, CdkDeployment, synth
from aws_ecr_module.utils.config_utils import stack_id_for_repository

pytestmark = pytest.mark.integration

STACK_NAME = 'ecr-module-test'
STORAGE_THRESHOLD_BYTES = 5 * 1024 * 1024 * 1024


def test_monitoring(make_options, region, test_id):
	"""Test alarms, the SNS topic and the monitoring outputs."""
	# Given: The monitoring fixture with thresholds 5 GB, 500 calls and 3 findings
	repository_name = f'it-ecr-monitoring-{test_id}'
	options = make_options(
		'monitoring.json', name=repository_name, sns_topic_name=f'{repository_name}-test-alerts'
	)

	# When: We deploy it
	with CdkDeployment(options) as deployment:
		# Then: The outputs describe the monitoring setup
		monitoring_status = deployment.output_map('monitoring_status')
		assert monitoring_status['enabled'] is True
		assert monitoring_status['sns_topic_created'] is True
		assert monitoring_status['security_monitoring_enabled'] is True
		assert monitoring_status['storage_threshold_gb'] == 5
		assert monitoring_status['api_calls_threshold'] == 500
		assert monitoring_status['security_findings_threshold'] == 3

		topic_arn = deployment.output('sns_topic_arn')
		assert 'test-alerts' in topic_arn
		assert aws_inspector.topic_exists(topic_arn, region)

		cloudwatch_alarms = deployment.output_map('cloudwatch_alarms')
		assert set(cloudwatch_alarms) == {
			'storage_usage_alarm',
			'api_calls_alarm',
			'image_push_alarm',
			'image_pull_alarm',
			'security_findings_alarm',
		}

		repository = aws_inspector.wait_for_repository(repository_name, region)
		assert repository['imageTagMutability'] == 'IMMUTABLE'
		assert repository['imageScanningConfiguration']['scanOnPush'] is True

		alarms = {
			alarm['AlarmName']: alarm
			for alarm in aws_inspector.describe_alarms(
				[
					f'{repository_name}-ecr-storage-usage',
					f'{repository_name}-ecr-api-calls',
					f'{repository_name}-ecr-security-findings',
				],
				region,
			)
		}
		assert len(alarms) == 3

		storage_alarm = alarms[f'{repository_name}-ecr-storage-usage']
		assert storage_alarm['Namespace'] == 'AWS/ECR'
		assert storage_alarm['MetricName'] == 'RepositorySizeInBytes'
		assert storage_alarm['ComparisonOperator'] == 'GreaterThanThreshold'
		assert storage_alarm['Threshold'] == STORAGE_THRESHOLD_BYTES
		assert storage_alarm['Dimensions'] == [{'Name': 'RepositoryName', 'Value': repository_name}]

		assert alarms[f'{repository_name}-ecr-api-calls']['MetricName'] == 'ApiCallCount'
		assert alarms[f'{repository_name}-ecr-api-calls']['Threshold'] == 500
		assert alarms[f'{repository_name}-ecr-security-findings']['MetricName'] == 'HighSeverityVulnerabilityCount'
		assert alarms[f'{repository_name}-ecr-security-findings']['Threshold'] == 3

		for alarm in alarms.values():
			assert topic_arn in alarm['AlarmActions']
			assert topic_arn in alarm['OKActions']


def test_advanced_tagging(make_options, region, test_id):
	"""Test the advanced, basic and legacy tagging repositories."""
	options = make_options('advanced-tagging.json', name_suffix=test_id)

	with CdkDeployment(options) as deployment:
		repositories = {}
		for base_name in ('test-advanced-tagging', 'test-basic-tagging', 'test-legacy-tagging'):
			stack = stack_id_for_repository(STACK_NAME, f'{base_name}-{test_id}')
			repository_url = deployment.output('repository_url', stack)
			repository_name = aws_inspector.extract_repository_name_from_url(repository_url)
			repositories[base_name] = (stack, aws_inspector.wait_for_repository(repository_name, region))

		stack, advanced = repositories['test-advanced-tagging']
		assert 'test-advanced-tagging' in advanced['repositoryName']
		assert advanced['imageTagMutability'] == 'IMMUTABLE'
		assert deployment.output_map('tagging_strategy', stack)['mode'] == 'advanced'
		assert deployment.output_map('tag_compliance_status', stack)['compliant'] is True
		applied_tags = deployment.output_map('applied_tags', stack)
		assert applied_tags['CostCenter'] == 'CC-1234'
		assert aws_inspector.list_repository_tags(advanced['repositoryArn'], region)['ApplicationName'] == (
			'container-platform'
		)

		stack, basic = repositories['test-basic-tagging']
		assert 'test-basic-tagging' in basic['repositoryName']
		assert deployment.output_map('applied_tags', stack)['Service'] == 'api'

		stack, legacy = repositories['test-legacy-tagging']
		assert 'test-legacy-tagging' in legacy['repositoryName']
		assert legacy['imageTagMutability'] == 'MUTABLE'
		assert deployment.output_map('applied_tags', stack) == {'Environment': 'legacy', 'Owner': 'ops'}


def test_tag_validation_failure(make_options, test_id):
	"""Test synthesis fails when required tags are missing."""
	options = make_options(
		'basic.json',
		name=f'test-tag-validation-{test_id}',
		enable_tag_validation=True,
		required_tags=['Owner', 'CostCenter'],
	)

	try:
		with pytest.raises(CdkCommandError) as excinfo:
			synth(options)
	finally:
		os.remove(options.config_path)

	assert 'Missing required tags' in excinfo.value.output


def test_pull_request_rules(make_options, test_id):
	"""Test the approval role and the pull request rules output."""
	repository_name = f'test-pr-rules-{test_id}'
	options = make_options('pull-request-rules.json', name=repository_name)

	with CdkDeployment(options) as deployment:
		assert 'amazonaws.com' in deployment.output('repository_url')
		assert deployment.output('repository_arn').startswith('arn:aws:ecr:')
		assert deployment.output('approval_role_arn').startswith('arn:aws:iam:')

		pull_request_rules = deployment.output_map('pull_request_rules')
		assert pull_request_rules['enabled'] is True
		assert [rule['name'] for rule in pull_request_rules['rules']] == [
			'security-scan-gate',
			'production-approval',
			'ci-integration',
		]


def test_pull_request_rules_disabled(make_options, test_id):
	repository_name = f'test-no-pr-rules-{test_id}'
	options = make_options('basic.json', name=repository_name)

	with CdkDeployment(options) as deployment:
		assert deployment.output('repository_name') == repository_name
		with pytest.raises(KeyError):
			deployment.output('pull_request_rules')


def test_pull_request_rules_validation(make_options, test_id):
	"""Test an invalid rule type fails before anything is deployed."""
	options = make_options(
		'basic.json',
		name=f'test-invalid-rules-{test_id}',
		enable_pull_request_rules=True,
		pull_request_rules=[{'name': 'invalid-rule', 'type': 'invalid_type', 'enabled': True}],
	)

	try:
		with pytest.raises(CdkCommandError) as excinfo:
			synth(options)
	finally:
		os.remove(options.config_path)

	assert 'Pull request rule type must be one of' in excinfo.value.output
