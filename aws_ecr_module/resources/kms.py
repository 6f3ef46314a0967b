"""
Security-related resource creation for the ECR repository module.

This module provides functions for creating or importing the KMS key used
to encrypt repository contents.
"""

from typing import Optional

from constructs import Construct
from aws_cdk import Duration, RemovalPolicy, aws_iam as iam, aws_kms as kms


def create_key(
	scope: Construct,
	repository_name: str,
	deletion_window_days: int = 7,
	enable_key_rotation: bool = True,
	prevent_destroy: bool = False,
) -> kms.Key:
	"""
	Create a KMS key for repository encryption.

	The key gets an 'alias/ecr/<repository>' alias and a key policy statement
	allowing ECR in this account to use it through grants.

	Args:
	    scope: The CDK construct scope
	    repository_name: Name of the repository the key protects
	    deletion_window_days: Waiting period before the key is deleted (7-30)
	    enable_key_rotation: Whether automatic key rotation is enabled
	    prevent_destroy: Retain the key when the stack is deleted

	Returns:
	    kms.Key: The created KMS key
	"""
	if not 7 <= deletion_window_days <= 30:
		raise ValueError('kms_deletion_window_days must be between 7 and 30')

	key = kms.Key(
		scope,
		'kms-ecr',
		description=f'ECR repository encryption key for {repository_name}',
		alias=f'alias/ecr/{repository_name}',
		enable_key_rotation=enable_key_rotation,
		pending_window=Duration.days(deletion_window_days),
		removal_policy=RemovalPolicy.RETAIN if prevent_destroy else RemovalPolicy.DESTROY,
	)

	key.add_to_resource_policy(
		iam.PolicyStatement(
			sid='AllowECRServiceUse',
			actions=[
				'kms:Encrypt',
				'kms:Decrypt',
				'kms:ReEncrypt*',
				'kms:GenerateDataKey*',
				'kms:DescribeKey',
				'kms:CreateGrant',
			],
			principals=[iam.AnyPrincipal()],
			resources=['*'],
			conditions={
				'StringEquals': {
					'kms:ViaService': f'ecr.{key.stack.region}.amazonaws.com',
					'kms:CallerAccount': key.stack.account,
				}
			},
		)
	)

	return key


def import_key(scope: Construct, kms_key_arn: Optional[str]) -> Optional[kms.IKey]:
	"""
	Import an existing KMS key by ARN.

	Args:
	    scope: The CDK construct scope
	    kms_key_arn: ARN of the existing key

	Returns:
	    The imported key, or None when no ARN is given
	"""
	if not kms_key_arn:
		return None
	return kms.Key.from_key_arn(scope, 'kms-ecr-imported', kms_key_arn)
