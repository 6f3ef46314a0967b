"""
AWS read-back utilities for the ECR repository module.

Used by the integration tests to check what a deployment actually created:
- ECR: repository details, repository and lifecycle policies, tags
- ECR registry: scanning configuration
- CloudWatch: alarms by name
- SNS: topic existence
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from cachetools import TTLCache, cached

logger = logging.getLogger(__name__)

boto_config = Config(retries={'max_attempts': 5, 'mode': 'standard'})

client_cache = TTLCache(maxsize=32, ttl=900)


@cached(cache=client_cache)
def get_client(service_name: str, region: Optional[str] = None):
	"""Get a cached boto3 client for a service and region."""
	return boto3.session.Session().client(service_name, region_name=region, config=boto_config)


def extract_repository_name_from_url(repository_url: str) -> str:
	"""
	Extract the repository name from a repository URL.

	'123456789012.dkr.ecr.us-east-1.amazonaws.com/team/app' yields 'team/app'.

	Raises:
	    ValueError: If the URL has no repository path
	"""
	_, separator, name = repository_url.partition('/')
	if not separator or not name:
		raise ValueError(f'Not a repository URL: {repository_url}')
	return name


def describe_repository(repository_name: str, region: Optional[str] = None) -> Optional[Dict[str, Any]]:
	"""
	Describe an ECR repository.

	Returns:
	    The repository description, or None if the repository does not exist
	"""
	try:
		response = get_client('ecr', region).describe_repositories(repositoryNames=[repository_name])
		repositories = response.get('repositories', [])
		return repositories[0] if repositories else None
	except ClientError as e:
		if e.response['Error']['Code'] != 'RepositoryNotFoundException':
			logger.error(f'Error describing repository {repository_name}: {e}')
		return None


def get_repository_policy(repository_name: str, region: Optional[str] = None) -> Optional[Dict[str, Any]]:
	"""Get the repository policy document, or None if no policy is set."""
	try:
		response = get_client('ecr', region).get_repository_policy(repositoryName=repository_name)
		return json.loads(response['policyText'])
	except ClientError as e:
		if e.response['Error']['Code'] != 'RepositoryPolicyNotFoundException':
			logger.error(f'Error retrieving repository policy for {repository_name}: {e}')
		return None


def get_lifecycle_policy(repository_name: str, region: Optional[str] = None) -> Optional[Dict[str, Any]]:
	"""Get the parsed lifecycle policy, or None if no policy is set."""
	try:
		response = get_client('ecr', region).get_lifecycle_policy(repositoryName=repository_name)
		return json.loads(response['lifecyclePolicyText'])
	except ClientError as e:
		if e.response['Error']['Code'] != 'LifecyclePolicyNotFoundException':
			logger.error(f'Error retrieving lifecycle policy for {repository_name}: {e}')
		return None


def list_repository_tags(repository_arn: str, region: Optional[str] = None) -> Dict[str, str]:
	"""
	List the tags on a repository.

	Returns:
	    Tags as a key to value dictionary, empty on error
	"""
	try:
		response = get_client('ecr', region).list_tags_for_resource(resourceArn=repository_arn)
		return {tag['Key']: tag['Value'] for tag in response.get('tags', [])}
	except ClientError as e:
		logger.error(f'Error listing tags for {repository_arn}: {e}')
		return {}


def get_registry_scanning_configuration(region: Optional[str] = None) -> Optional[Dict[str, Any]]:
	"""Get the account's registry scanning configuration."""
	try:
		response = get_client('ecr', region).get_registry_scanning_configuration()
		return response.get('scanningConfiguration')
	except ClientError as e:
		logger.error(f'Error retrieving registry scanning configuration: {e}')
		return None


def describe_alarms(alarm_names: List[str], region: Optional[str] = None) -> List[Dict[str, Any]]:
	"""
	Describe CloudWatch metric alarms by name.

	Returns:
	    The alarms found, empty on error
	"""
	if not alarm_names:
		return []
	try:
		paginator = get_client('cloudwatch', region).get_paginator('describe_alarms')
		alarms = []
		for page in paginator.paginate(AlarmNames=alarm_names, AlarmTypes=['MetricAlarm']):
			alarms.extend(page.get('MetricAlarms', []))
		return alarms
	except ClientError as e:
		logger.error(f'Error describing alarms: {e}')
		return []


def topic_exists(topic_arn: str, region: Optional[str] = None) -> bool:
	"""Check whether an SNS topic exists in the account."""
	try:
		paginator = get_client('sns', region).get_paginator('list_topics')
		for page in paginator.paginate():
			if any(topic['TopicArn'] == topic_arn for topic in page.get('Topics', [])):
				return True
		return False
	except ClientError as e:
		logger.error(f'Error listing SNS topics: {e}')
		return False


def wait_for_repository(
	repository_name: str, region: Optional[str] = None, timeout: float = 60, interval: float = 5
) -> Optional[Dict[str, Any]]:
	"""
	Poll until a repository is visible.

	Freshly created repositories can take a moment to show up in
	DescribeRepositories.

	Args:
	    repository_name: Name of the repository
	    region: AWS region
	    timeout: Seconds to keep polling
	    interval: Seconds between polls

	Returns:
	    The repository description, or None if it did not appear in time
	"""
	deadline = time.monotonic() + timeout
	while True:
		repository = describe_repository(repository_name, region)
		if repository is not None:
			return repository
		if time.monotonic() >= deadline:
			logger.warning(f'Repository {repository_name} not visible after {timeout}s')
			return None
		time.sleep(interval)
