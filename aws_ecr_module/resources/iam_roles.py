"""
Identity-related resource creation for the ECR repository module.

This module provides functions for creating IAM roles used by the pull
request approval workflow.
"""

from constructs import Construct
from aws_cdk import aws_ecr as ecr, aws_iam as iam


def create_approval_role(scope: Construct, repository_name: str, repository: ecr.IRepository) -> iam.Role:
	"""
	Create the IAM role used to approve images pushed to the repository.

	Approvers assume the role from within the account. It can inspect images
	and scan findings, and re-tag an approved image by putting its manifest
	under a new tag.

	Args:
		scope: The CDK construct scope
		repository_name: Name of the repository
		repository: The repository the role approves images for

	Returns:
		iam.Role: The created IAM role
	"""
	role = iam.Role(
		scope,
		'pull-request-approval-role',
		role_name=f'{repository_name.replace("/", "-")}-pr-approval'[:64],
		assumed_by=iam.AccountRootPrincipal(),
		description=f'Approves images pushed to {repository_name}',
	)

	role.add_to_policy(
		iam.PolicyStatement(
			actions=[
				'ecr:DescribeImages',
				'ecr:DescribeImageScanFindings',
				'ecr:BatchGetImage',
				'ecr:ListTagsForResource',
				'ecr:PutImage',
			],
			resources=[repository.repository_arn],
		)
	)
	role.add_to_policy(
		iam.PolicyStatement(
			actions=['ecr:GetAuthorizationToken'],
			resources=['*'],
		)
	)

	return role
