"""
Shared fixtures for the integration tests.

These tests deploy real stacks with the CDK CLI into the account and region of
the current AWS credentials, read the resources back with boto3 and destroy
everything afterwards. They only run when ECR_MODULE_INTEGRATION=1.
"""

import os
import pytest

from aws_ecr_module.utils import aws_inspector
from aws_ecr_module.utils.cdk_runner import CdkOptions, unique_id

APP_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
FIXTURES_DIR = os.path.join(APP_DIR, 'tests', 'fixtures')


def pytest_collection_modifyitems(config, items):
	if os.environ.get('ECR_MODULE_INTEGRATION') == '1':
		return
	skip_integration = pytest.mark.skip(reason='set ECR_MODULE_INTEGRATION=1 to deploy real resources')
	for item in items:
		if 'integration' in item.keywords:
			item.add_marker(skip_integration)


@pytest.fixture(scope='function', autouse=True)
def aws_credentials():
	"""Use the real credentials of the environment instead of the moto ones."""
	aws_inspector.client_cache.clear()
	yield


@pytest.fixture
def region():
	return os.environ.get('AWS_REGION') or os.environ.get('AWS_DEFAULT_REGION') or 'us-east-1'


@pytest.fixture
def make_options(region):
	"""Build runner options for a fixture, deploying into the test region."""

	def _make(fixture, **variables):
		variables.setdefault('region', region)
		return CdkOptions(
			app_dir=APP_DIR,
			config=os.path.join(FIXTURES_DIR, fixture),
			variables=variables,
			env={'CDK_DEFAULT_REGION': region},
		)

	return _make


@pytest.fixture
def test_id():
	"""Unique lowercase id keeping resource names apart between runs."""
	return unique_id()
