"""
Unit tests for the config_utils module.
"""

import json
import pytest

from aws_ecr_module.utils.config_utils import (
	get_config,
	get_repository_configs,
	merge_config,
	output_key,
	stack_id_for_repository,
	validate_repository_name,
)


class TestConfigLoading:
	def test_get_config(self, tmp_path):
		path = tmp_path / 'settings.json'
		path.write_text(json.dumps({'name': 'app'}))

		assert get_config(str(path)) == {'name': 'app'}

	def test_merge_config_is_recursive(self):
		"""Test nested dictionaries are merged and inputs left untouched."""
		base = {'tags': {'Owner': 'a', 'Project': 'b'}, 'scan_on_push': True}
		overrides = {'tags': {'Owner': 'c'}, 'scan_on_push': False}

		merged = merge_config(base, overrides)

		assert merged == {'tags': {'Owner': 'c', 'Project': 'b'}, 'scan_on_push': False}
		assert base['tags']['Owner'] == 'a'

	def test_lists_are_replaced(self):
		merged = merge_config({'required_tags': ['Owner']}, {'required_tags': ['Project']})

		assert merged == {'required_tags': ['Project']}


class TestRepositoryConfigs:
	"""Tests for building per-repository configurations."""

	def test_repositories_merge_over_defaults(self):
		settings = {
			'stack_name': 'ecr',
			'defaults': {'scan_on_push': False, 'tags': {'Owner': 'platform'}},
			'repositories': [{'name': 'api', 'tags': {'Service': 'api'}}, {'name': 'worker'}],
		}

		configs = get_repository_configs(settings)

		assert configs[0] == {'name': 'api', 'scan_on_push': False, 'tags': {'Owner': 'platform', 'Service': 'api'}}
		assert configs[1] == {'name': 'worker', 'scan_on_push': False, 'tags': {'Owner': 'platform'}}

	def test_single_repository_settings(self):
		"""Test a settings object with a name is a single repository."""
		configs = get_repository_configs({'stack_name': 'ecr', 'name': 'app', 'scan_on_push': True})

		assert configs == [{'name': 'app', 'scan_on_push': True}]

	def test_name_suffix(self):
		settings = {'name_suffix': 'a1b2c3', 'repositories': [{'name': 'app'}, {'name': 'team/api'}]}

		names = [config['name'] for config in get_repository_configs(settings)]

		assert names == ['app-a1b2c3', 'team/api-a1b2c3']

	def test_duplicate_repositories(self):
		with pytest.raises(ValueError, match='more than once'):
			get_repository_configs({'repositories': [{'name': 'app'}, {'name': 'app'}]})

	def test_missing_repositories(self):
		with pytest.raises(ValueError, match='repositories'):
			get_repository_configs({'stack_name': 'ecr'})


class TestNames:
	@pytest.mark.parametrize('name', ['app', 'team/app', 'team/app-v2', 'a.b_c'])
	def test_valid_repository_names(self, name):
		validate_repository_name(name)

	@pytest.mark.parametrize('name', ['a', 'App', 'app-', '/app', 'team//app', 'x' * 257, None])
	def test_invalid_repository_names(self, name):
		with pytest.raises(ValueError):
			validate_repository_name(name)

	def test_stack_id_for_repository(self):
		assert stack_id_for_repository('ecr-module', 'team/app_v2') == 'ecr-module-team-app-v2'

	@pytest.mark.parametrize(
		'name,expected',
		[('repository_url', 'RepositoryUrl'), ('kms_key_arn', 'KmsKeyArn'), ('registry_id', 'RegistryId')],
	)
	def test_output_key(self, name, expected):
		assert output_key(name) == expected
