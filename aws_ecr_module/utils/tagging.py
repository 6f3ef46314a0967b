"""
Tagging utilities for the ECR repository module.

Builds the final set of tags applied to a repository from default tag
templates and user supplied tags, optionally normalizing keys and values and
validating that required tags are present.
"""

import re
from typing import Any, Dict, List, Optional

MAX_TAGS = 50
MAX_TAG_KEY_LENGTH = 128
MAX_TAG_VALUE_LENGTH = 256

TAG_KEY_CASES = ('PascalCase', 'camelCase', 'snake_case', 'kebab-case')

# Template values are resolved against the default tag inputs; keys with an
# empty resolved value are dropped.
DEFAULT_TAG_TEMPLATES: Dict[str, Dict[str, str]] = {
	'basic': {
		'ManagedBy': 'CDK',
		'Environment': '{environment}',
		'Owner': '{owner}',
		'Project': '{project}',
	},
	'cost_allocation': {
		'ManagedBy': 'CDK',
		'Environment': '{environment}',
		'Owner': '{owner}',
		'Project': '{project}',
		'CostCenter': '{cost_center}',
		'BillingMode': 'shared',
	},
	'compliance': {
		'ManagedBy': 'CDK',
		'Environment': '{environment}',
		'Owner': '{owner}',
		'Project': '{project}',
		'CostCenter': '{cost_center}',
		'DataClassification': 'internal',
		'ComplianceScope': 'required',
		'BackupPolicy': 'retain',
	},
	'sdlc': {
		'ManagedBy': 'CDK',
		'Environment': '{environment}',
		'Owner': '{owner}',
		'Project': '{project}',
		'Application': '{project}',
		'LifecycleStage': '{environment}',
	},
}


class TaggingResult:
	"""
	Result of resolving the tags of a repository.

	Attributes:
	    applied_tags (Dict[str, str]): Tags applied to the repository resources
	    strategy (Dict[str, Any]): Description of the tagging strategy in use
	    compliance_status (Dict[str, Any]): Outcome of required-tag validation
	"""

	def __init__(self, applied_tags: Dict[str, str], strategy: Dict[str, Any], compliance_status: Dict[str, Any]):
		self.applied_tags = applied_tags
		self.strategy = strategy
		self.compliance_status = compliance_status


def build_default_tags(
	template: str,
	environment: Optional[str] = None,
	owner: Optional[str] = None,
	project: Optional[str] = None,
	cost_center: Optional[str] = None,
) -> Dict[str, str]:
	"""
	Build default tags from a named template.

	Args:
	    template: Template name ('basic', 'cost_allocation', 'compliance' or 'sdlc')
	    environment: Environment name
	    owner: Owning team or person
	    project: Project name
	    cost_center: Cost center identifier

	Returns:
	    Dictionary of default tags with unresolved entries removed
	"""
	if template not in DEFAULT_TAG_TEMPLATES:
		valid = ', '.join(DEFAULT_TAG_TEMPLATES)
		raise ValueError(f'Unknown default tags template {template!r}. Valid templates: {valid}')

	values = {
		'environment': environment or '',
		'owner': owner or '',
		'project': project or '',
		'cost_center': cost_center or '',
	}

	tags = {}
	for key, value in DEFAULT_TAG_TEMPLATES[template].items():
		resolved = value.format(**values)
		if resolved:
			tags[key] = resolved

	return tags


def _split_words(key: str) -> List[str]:
	# Split on separators and on lower-to-upper case boundaries
	spaced = re.sub(r'([a-z0-9])([A-Z])', r'\1 \2', key)
	return [word for word in re.split(r'[\s_\-:./]+', spaced) if word]


def normalize_tag_key(key: str, key_case: str) -> str:
	"""
	Convert a tag key to the requested case.

	Args:
	    key: Original tag key
	    key_case: One of 'PascalCase', 'camelCase', 'snake_case', 'kebab-case'

	Returns:
	    The normalized key
	"""
	if key_case not in TAG_KEY_CASES:
		raise ValueError(f'tag_key_case must be one of {", ".join(TAG_KEY_CASES)}')

	words = _split_words(key)
	if not words:
		return key

	if key_case == 'PascalCase':
		return ''.join(word[:1].upper() + word[1:].lower() for word in words)
	if key_case == 'camelCase':
		first, rest = words[0].lower(), words[1:]
		return first + ''.join(word[:1].upper() + word[1:].lower() for word in rest)
	if key_case == 'snake_case':
		return '_'.join(word.lower() for word in words)
	return '-'.join(word.lower() for word in words)


def normalize_tags(tags: Dict[str, str], key_case: str, normalize_values: bool = True) -> Dict[str, str]:
	"""
	Normalize tag keys (and optionally values).

	Later keys win when two keys normalize to the same value.
	"""
	normalized = {}
	for key, value in tags.items():
		value = str(value)
		normalized[normalize_tag_key(key, key_case)] = value.strip() if normalize_values else value
	return normalized


def find_missing_required_tags(tags: Dict[str, str], required_tags: List[str]) -> List[str]:
	"""Return the required tag keys that are absent or empty."""
	return [key for key in required_tags if not str(tags.get(key, '')).strip()]


def check_tag_limits(tags: Dict[str, str]) -> None:
	"""
	Enforce the AWS tag limits.

	Raises:
	    ValueError: If a limit is exceeded
	"""
	if len(tags) > MAX_TAGS:
		raise ValueError(f'A resource can have at most {MAX_TAGS} tags, got {len(tags)}')
	for key, value in tags.items():
		if not key or len(key) > MAX_TAG_KEY_LENGTH:
			raise ValueError(f'Tag key {key!r} must be 1-{MAX_TAG_KEY_LENGTH} characters')
		if key.lower().startswith('aws:'):
			raise ValueError(f'Tag key {key!r} uses the reserved "aws:" prefix')
		if len(value) > MAX_TAG_VALUE_LENGTH:
			raise ValueError(f'Tag value for {key!r} exceeds {MAX_TAG_VALUE_LENGTH} characters')


def resolve_tags(
	tags: Optional[Dict[str, Any]] = None,
	enable_default_tags: bool = True,
	default_tags_template: str = 'basic',
	default_tags_environment: Optional[str] = None,
	default_tags_owner: Optional[str] = None,
	default_tags_project: Optional[str] = None,
	default_tags_cost_center: Optional[str] = None,
	enable_tag_normalization: bool = False,
	tag_key_case: str = 'PascalCase',
	normalize_tag_values: bool = True,
	enable_tag_validation: bool = False,
	required_tags: Optional[List[str]] = None,
) -> TaggingResult:
	"""
	Resolve the tags applied to a repository.

	User tags override default tags. Normalization runs on the merged set and
	validation runs on the normalized result.

	Returns:
	    TaggingResult with the applied tags, strategy and compliance status

	Raises:
	    ValueError: If validation is enabled and required tags are missing,
	        or if the AWS tag limits are exceeded
	"""
	user_tags = {str(key): str(value) for key, value in (tags or {}).items()}
	required = list(required_tags or [])

	merged: Dict[str, str] = {}
	if enable_default_tags:
		merged.update(
			build_default_tags(
				default_tags_template,
				environment=default_tags_environment,
				owner=default_tags_owner,
				project=default_tags_project,
				cost_center=default_tags_cost_center,
			)
		)
	merged.update(user_tags)

	if enable_tag_normalization:
		merged = normalize_tags(merged, tag_key_case, normalize_values=normalize_tag_values)
		required = [normalize_tag_key(key, tag_key_case) for key in required]

	check_tag_limits(merged)

	missing = find_missing_required_tags(merged, required)
	if enable_tag_validation and missing:
		raise ValueError(f'Missing required tags: {", ".join(missing)}')

	if enable_default_tags or enable_tag_normalization or enable_tag_validation:
		mode = 'advanced'
	elif user_tags:
		mode = 'basic'
	else:
		mode = 'none'

	strategy = {
		'mode': mode,
		'default_tags_enabled': enable_default_tags,
		'default_tags_template': default_tags_template if enable_default_tags else None,
		'normalization_enabled': enable_tag_normalization,
		'tag_key_case': tag_key_case if enable_tag_normalization else None,
		'validation_enabled': enable_tag_validation,
	}
	compliance_status = {
		'validation_enabled': enable_tag_validation,
		'required_tags': required,
		'missing_tags': missing,
		'compliant': not missing,
		'total_tags': len(merged),
	}

	return TaggingResult(applied_tags=merged, strategy=strategy, compliance_status=compliance_status)
