"""
ECR-related resource creation for the ECR repository module.

This module provides functions for creating the ECR repository itself and
attaching its repository policy and lifecycle policy.
"""

import json
from typing import Any, Dict, Optional, Union

from constructs import Construct
from aws_cdk import RemovalPolicy, aws_ecr as ecr, aws_iam as iam, aws_kms as kms


def create_ecr_repository(
	scope: Construct,
	repository_name: str,
	image_tag_mutability: str = 'MUTABLE',
	scan_on_push: bool = True,
	encryption_type: str = 'AES256',
	kms_key: Optional[kms.IKey] = None,
	force_delete: bool = False,
	prevent_destroy: bool = False,
) -> ecr.Repository:
	"""
	Create an ECR repository for container images.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository
	    image_tag_mutability: 'MUTABLE' or 'IMMUTABLE'
	    scan_on_push: Whether images are scanned when pushed
	    encryption_type: 'AES256' or 'KMS'
	    kms_key: KMS key used when encryption_type is 'KMS'
	    force_delete: Delete the repository even when it contains images
	    prevent_destroy: Retain the repository when the stack is deleted

	Returns:
	    ecr.Repository: The created ECR repository
	"""
	if encryption_type == 'KMS':
		encryption = ecr.RepositoryEncryption.KMS
	else:
		encryption = ecr.RepositoryEncryption.AES_256
		kms_key = None

	return ecr.Repository(
		scope=scope,
		id='ecr-repository',
		repository_name=repository_name,
		image_tag_mutability=ecr.TagMutability.IMMUTABLE
		if image_tag_mutability == 'IMMUTABLE'
		else ecr.TagMutability.MUTABLE,
		image_scan_on_push=scan_on_push,
		encryption=encryption,
		encryption_key=kms_key,
		removal_policy=RemovalPolicy.RETAIN if prevent_destroy else RemovalPolicy.DESTROY,
		empty_on_delete=force_delete and not prevent_destroy,
	)


def apply_lifecycle_policy(repository: ecr.Repository, lifecycle_policy_text: str) -> None:
	"""
	Attach a rendered lifecycle policy to a repository.

	The L2 lifecycle rule API cannot express every selection ECR supports,
	so the policy text is written straight onto the CloudFormation resource.

	Args:
	    repository: The repository to configure
	    lifecycle_policy_text: Lifecycle policy JSON
	"""
	cfn_repository: ecr.CfnRepository = repository.node.default_child
	cfn_repository.add_property_override('LifecyclePolicy.LifecyclePolicyText', lifecycle_policy_text)


def apply_repository_policy(repository: ecr.Repository, policy: Union[str, Dict[str, Any]]) -> int:
	"""
	Add the statements of a repository policy document to a repository.

	Args:
	    repository: The repository to configure
	    policy: Policy document as JSON text or a decoded dictionary

	Returns:
	    Number of statements added
	"""
	if isinstance(policy, str):
		try:
			policy = json.loads(policy)
		except json.JSONDecodeError as e:
			raise ValueError(f'policy is not valid JSON: {e}') from e

	statements = policy.get('Statement') if isinstance(policy, dict) else None
	if isinstance(statements, dict):
		statements = [statements]
	if not statements:
		raise ValueError('policy must contain at least one Statement')

	for statement in statements:
		repository.add_to_resource_policy(iam.PolicyStatement.from_json(statement))

	return len(statements)
