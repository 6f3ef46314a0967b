import copy
import json
import re
from typing import Any, Dict, List

REPOSITORY_NAME_PATTERN = re.compile(r'^(?:[a-z0-9]+(?:[._-][a-z0-9]+)*/)*[a-z0-9]+(?:[._-][a-z0-9]+)*$')

# Top-level settings that are not repository configuration
SETTINGS_KEYS = ('defaults', 'stack_name', 'name_suffix', 'region')


def get_config(json_dir):
	"""
	Load a JSON configuration file.

	Args:
	    json_dir: Path to the JSON file

	Returns:
	    The loaded JSON configuration as a Python object
	"""
	with open(json_dir, 'r') as json_file:
		config = json.load(json_file)
		return config


def merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
	"""
	Merge two configuration dictionaries.

	Nested dictionaries are merged recursively; any other value in
	`overrides` replaces the value in `base`. Neither input is modified.

	Args:
	    base: Base configuration
	    overrides: Values taking precedence over the base

	Returns:
	    The merged configuration
	"""
	merged = copy.deepcopy(base)
	for key, value in overrides.items():
		if isinstance(value, dict) and isinstance(merged.get(key), dict):
			merged[key] = merge_config(merged[key], value)
		else:
			merged[key] = copy.deepcopy(value)
	return merged


def validate_repository_name(name: str) -> None:
	"""
	Validate an ECR repository name.

	Raises:
	    ValueError: If the name does not follow the ECR naming rules
	"""
	if not isinstance(name, str) or not 2 <= len(name) <= 256:
		raise ValueError(f'Repository name must be 2-256 characters, got {name!r}')
	if not REPOSITORY_NAME_PATTERN.match(name):
		raise ValueError(
			f'Invalid repository name {name!r}: use lowercase letters, numbers, '
			'and separators (., _, -, /) between alphanumeric groups'
		)


def get_repository_configs(settings: Dict[str, Any]) -> List[Dict[str, Any]]:
	"""
	Build the per-repository configurations from the settings file.

	The settings hold an optional 'defaults' object and a 'repositories' list.
	Each repository is merged over the defaults. A settings object that has a
	'name' and no 'repositories' list is treated as a single repository.
	An optional top-level 'name_suffix' is appended to every repository name,
	which keeps names unique between test runs.

	Args:
	    settings: The loaded settings

	Returns:
	    List of repository configurations
	"""
	defaults = settings.get('defaults', {})

	if 'repositories' in settings:
		repositories = settings['repositories']
	elif 'name' in settings:
		repositories = [{key: value for key, value in settings.items() if key not in SETTINGS_KEYS}]
	else:
		raise ValueError('Settings must define a "repositories" list or a repository "name"')

	configs = []
	seen = set()
	for repository in repositories:
		config = merge_config(defaults, repository)
		if settings.get('name_suffix'):
			config['name'] = f'{config.get("name")}-{settings["name_suffix"]}'
		validate_repository_name(config.get('name'))
		if config['name'] in seen:
			raise ValueError(f'Repository {config["name"]!r} is configured more than once')
		seen.add(config['name'])
		configs.append(config)

	return configs


def stack_id_for_repository(stack_name: str, repository_name: str) -> str:
	"""
	Build the CDK stack id for a repository.

	CloudFormation stack names only allow alphanumerics and hyphens.
	"""
	return f'{stack_name}-{re.sub(r"[^A-Za-z0-9-]", "-", repository_name)}'


def output_key(name: str) -> str:
	"""
	Convert a snake_case output name into its CloudFormation output key.

	Output logical ids only allow alphanumerics, so 'repository_url' is
	published as 'RepositoryUrl'.
	"""
	return ''.join(part[:1].upper() + part[1:] for part in name.split('_') if part)
