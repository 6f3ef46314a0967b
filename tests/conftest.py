"""
Shared pytest fixtures for the ECR repository module tests.
"""

import os
import json
import pytest
import boto3
import aws_cdk as cdk
from aws_cdk.assertions import Template
from moto import mock_aws

from aws_ecr_module.ecr_repository_stack import EcrRepositoryProps, EcrRepositoryStack
from aws_ecr_module.utils import aws_inspector

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), 'fixtures')
TEST_ENV = cdk.Environment(account='123456789012', region='us-east-1')


@pytest.fixture(scope='function', autouse=True)
def aws_credentials():
	"""Mocked AWS Credentials for moto."""
	os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
	os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
	os.environ['AWS_SECURITY_TOKEN'] = 'testing'
	os.environ['AWS_SESSION_TOKEN'] = 'testing'
	os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'

	yield

	os.environ.pop('AWS_ACCESS_KEY_ID', None)
	os.environ.pop('AWS_SECRET_ACCESS_KEY', None)
	os.environ.pop('AWS_SECURITY_TOKEN', None)
	os.environ.pop('AWS_SESSION_TOKEN', None)
	os.environ.pop('AWS_DEFAULT_REGION', None)


@pytest.fixture
def aws_mock():
	"""Start moto for the test and drop any cached clients."""
	aws_inspector.client_cache.clear()
	with mock_aws():
		yield
	aws_inspector.client_cache.clear()


@pytest.fixture
def ecr_client(aws_mock):
	"""Create a boto3 ECR client with moto mock."""
	yield boto3.client('ecr', region_name='us-east-1')


@pytest.fixture
def cloudwatch_client(aws_mock):
	"""Create a boto3 CloudWatch client with moto mock."""
	yield boto3.client('cloudwatch', region_name='us-east-1')


@pytest.fixture
def sns_client(aws_mock):
	"""Create a boto3 SNS client with moto mock."""
	yield boto3.client('sns', region_name='us-east-1')


@pytest.fixture
def load_fixture():
	"""Load a JSON settings fixture by file name."""

	def _load(name):
		with open(os.path.join(FIXTURES_DIR, name), 'r') as fixture_file:
			return json.load(fixture_file)

	return _load


@pytest.fixture
def build_stack():
	"""Synthesize an EcrRepositoryStack from configuration keyword arguments."""

	def _build(**config):
		app = cdk.App()
		props = EcrRepositoryProps.from_config(config)
		stack = EcrRepositoryStack(app, 'TestEcrRepositoryStack', props=props, env=TEST_ENV)
		return stack, Template.from_stack(stack)

	return _build
