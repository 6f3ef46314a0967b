"""
Synthesis tests for the settings fixtures used by the integration tests.
"""

import os
import pytest
import aws_cdk as cdk
from aws_cdk.assertions import Template

from aws_ecr_module.ecr_repository_stack import EcrRepositoryProps, EcrRepositoryStack
from aws_ecr_module.utils.config_utils import get_config, get_repository_configs, stack_id_for_repository

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), 'fixtures')
SETTINGS_FILE = os.path.join(os.path.dirname(__file__), '..', 'configuration', 'settings.json')


def synthesize(settings):
	"""Build every stack the app would create for the settings."""
	app = cdk.App()
	env = cdk.Environment(account='123456789012', region='us-east-1')
	stacks = []
	for config in get_repository_configs(settings):
		props = EcrRepositoryProps.from_config(config)
		stacks.append(
			EcrRepositoryStack(
				app, stack_id_for_repository(settings.get('stack_name', 'ecr-module'), props.name), props=props, env=env
			)
		)
	return stacks


@pytest.mark.parametrize('fixture', sorted(name for name in os.listdir(FIXTURES_DIR) if name.endswith('.json')))
def test_fixture_synthesizes(fixture):
	"""Test every fixture produces valid stacks."""
	# Given: A fixture with a unique name suffix, as the integration tests use it
	settings = get_config(os.path.join(FIXTURES_DIR, fixture))
	settings['name_suffix'] = 'abc123'

	# When: We synthesize its stacks
	stacks = synthesize(settings)

	# Then: Each stack holds exactly one repository
	assert stacks
	for stack in stacks:
		Template.from_stack(stack).resource_count_is('AWS::ECR::Repository', 1)


def test_example_settings_synthesize():
	stacks = synthesize(get_config(SETTINGS_FILE))

	assert [stack.props.name for stack in stacks] == ['platform/api', 'platform/worker']


def test_advanced_tagging_fixture_tags():
	"""Test the advanced tagging repository gets normalized compliance tags."""
	settings = get_config(os.path.join(FIXTURES_DIR, 'advanced-tagging.json'))

	advanced, basic, legacy = synthesize(settings)

	assert advanced.tagging.applied_tags['ApplicationName'] == 'container-platform'
	assert advanced.tagging.applied_tags['Team'] == 'platform'
	assert advanced.tagging.compliance_status['compliant'] is True
	assert basic.tagging.strategy['default_tags_template'] == 'basic'
	assert legacy.tagging.strategy['mode'] == 'basic'
