"""
Lifecycle policy utilities for the ECR repository module.

This module builds ECR lifecycle policies from three possible sources:
- A manual policy document supplied verbatim
- A predefined template (development, production, cost_optimization, compliance)
- Helper variables describing the common expire/keep rules

A lifecycle policy is an ordered list of rules. Each rule has a priority, a
selection (tag status, optional tag prefixes/patterns, a count type and number)
and an action. ECR evaluates rules from the lowest priority number upwards.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

TAG_STATUS_VALUES = ('tagged', 'untagged', 'any')
COUNT_TYPE_VALUES = ('imageCountMoreThan', 'sinceImagePushed')
ACTION_TYPE_VALUES = ('expire',)

MAX_DAYS = 3650
MAX_IMAGE_COUNT = 10000
MAX_TAG_PREFIXES = 100
MAX_TAG_PREFIX_LENGTH = 255

LIFECYCLE_TEMPLATES: Dict[str, Dict[str, Any]] = {
	'development': {
		'keep_latest_n_images': 50,
		'expire_untagged_after_days': 7,
		'expire_tagged_after_days': None,
		'tag_prefixes_to_keep': ['dev', 'feature'],
	},
	'production': {
		'keep_latest_n_images': 100,
		'expire_untagged_after_days': 14,
		'expire_tagged_after_days': 90,
		'tag_prefixes_to_keep': ['v', 'release', 'prod'],
	},
	'cost_optimization': {
		'keep_latest_n_images': 10,
		'expire_untagged_after_days': 3,
		'expire_tagged_after_days': 30,
		'tag_prefixes_to_keep': [],
	},
	'compliance': {
		'keep_latest_n_images': 200,
		'expire_untagged_after_days': 30,
		'expire_tagged_after_days': 365,
		'tag_prefixes_to_keep': ['v', 'release', 'audit'],
	},
}

SOURCE_MANUAL = 'manual'
SOURCE_TEMPLATE = 'template'
SOURCE_HELPER_VARIABLES = 'helper_variables'
SOURCE_NONE = 'none'


def create_lifecycle_rule(
	priority: int,
	description: str,
	tag_status: str,
	count_type: str,
	count_number: int,
	count_unit: Optional[str] = None,
	tag_prefix_list: Optional[List[str]] = None,
	tag_pattern_list: Optional[List[str]] = None,
) -> Dict[str, Any]:
	"""
	Create a single lifecycle policy rule.

	Optional selection keys are only included when they carry a value, which
	keeps the rendered JSON identical to what ECR returns on read-back.

	Args:
	    priority: Rule priority, lower numbers are evaluated first
	    description: Human readable description of the rule
	    tag_status: One of 'tagged', 'untagged' or 'any'
	    count_type: 'imageCountMoreThan' or 'sinceImagePushed'
	    count_number: Image count or number of days
	    count_unit: 'days' for 'sinceImagePushed' rules
	    tag_prefix_list: Tag prefixes selected by a 'tagged' rule
	    tag_pattern_list: Tag wildcard patterns selected by a 'tagged' rule

	Returns:
	    The rule as a dictionary
	"""
	selection: Dict[str, Any] = {'tagStatus': tag_status}
	if tag_prefix_list:
		selection['tagPrefixList'] = list(tag_prefix_list)
	if tag_pattern_list:
		selection['tagPatternList'] = list(tag_pattern_list)
	selection['countType'] = count_type
	if count_unit:
		selection['countUnit'] = count_unit
	selection['countNumber'] = count_number

	return {
		'rulePriority': priority,
		'description': description,
		'selection': selection,
		'action': {'type': 'expire'},
	}


def _check_range(name: str, value: Optional[int], maximum: int) -> None:
	if value is None:
		return
	if isinstance(value, bool) or not isinstance(value, int):
		raise ValueError(f'{name} must be an integer, got {value!r}')
	if value < 1 or value > maximum:
		raise ValueError(f'{name} must be between 1 and {maximum}, got {value}')


def build_helper_rules(
	expire_untagged_after_days: Optional[int] = None,
	keep_latest_n_images: Optional[int] = None,
	expire_tagged_after_days: Optional[int] = None,
	tag_prefixes_to_keep: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
	"""
	Build lifecycle rules from the helper variables.

	Rules are generated in a fixed order and numbered sequentially, skipping
	helpers that are not set:
	1. Expire untagged images after N days
	2. Keep the latest N tagged images (restricted to the prefixes to keep)
	3. Expire any image after N days

	Args:
	    expire_untagged_after_days: Days after which untagged images expire
	    keep_latest_n_images: Number of tagged images to keep
	    expire_tagged_after_days: Days after which any remaining image expires
	    tag_prefixes_to_keep: Tag prefixes protected by the keep-latest rule

	Returns:
	    Ordered list of lifecycle rules (may be empty)
	"""
	_check_range('lifecycle_expire_untagged_after_days', expire_untagged_after_days, MAX_DAYS)
	_check_range('lifecycle_keep_latest_n_images', keep_latest_n_images, MAX_IMAGE_COUNT)
	_check_range('lifecycle_expire_tagged_after_days', expire_tagged_after_days, MAX_DAYS)

	prefixes = list(tag_prefixes_to_keep or [])
	if len(prefixes) > MAX_TAG_PREFIXES:
		raise ValueError(f'lifecycle_tag_prefixes_to_keep accepts at most {MAX_TAG_PREFIXES} prefixes')
	for prefix in prefixes:
		if not prefix or len(prefix) > MAX_TAG_PREFIX_LENGTH:
			raise ValueError(f'Invalid tag prefix {prefix!r}: must be 1-{MAX_TAG_PREFIX_LENGTH} characters')

	rules = []
	priority = 1

	if expire_untagged_after_days is not None:
		rules.append(
			create_lifecycle_rule(
				priority=priority,
				description=f'Expire untagged images after {expire_untagged_after_days} days',
				tag_status='untagged',
				count_type='sinceImagePushed',
				count_unit='days',
				count_number=expire_untagged_after_days,
			)
		)
		priority += 1

	if keep_latest_n_images is not None:
		if prefixes:
			description = f'Keep latest {keep_latest_n_images} images tagged with {", ".join(prefixes)}'
		else:
			description = f'Keep latest {keep_latest_n_images} tagged images'
		rules.append(
			create_lifecycle_rule(
				priority=priority,
				description=description,
				tag_status='tagged',
				count_type='imageCountMoreThan',
				count_number=keep_latest_n_images,
				tag_prefix_list=prefixes or None,
				# A 'tagged' rule needs a selector; '*' matches every tag
				tag_pattern_list=None if prefixes else ['*'],
			)
		)
		priority += 1

	if expire_tagged_after_days is not None:
		rules.append(
			create_lifecycle_rule(
				priority=priority,
				description=f'Expire images older than {expire_tagged_after_days} days',
				tag_status='any',
				count_type='sinceImagePushed',
				count_unit='days',
				count_number=expire_tagged_after_days,
			)
		)

	return rules


def get_template_rules(template_name: str) -> List[Dict[str, Any]]:
	"""
	Expand a predefined lifecycle template into rules.

	Args:
	    template_name: Name of the template

	Returns:
	    Ordered list of lifecycle rules

	Raises:
	    ValueError: If the template is unknown
	"""
	if template_name not in LIFECYCLE_TEMPLATES:
		valid = ', '.join(LIFECYCLE_TEMPLATES)
		raise ValueError(f'Unknown lifecycle policy template {template_name!r}. Valid templates: {valid}')

	return build_helper_rules(**LIFECYCLE_TEMPLATES[template_name])


def validate_lifecycle_rules(rules: List[Dict[str, Any]]) -> None:
	"""
	Validate a list of lifecycle rules against the constraints ECR enforces.

	Args:
	    rules: Lifecycle rules to validate

	Raises:
	    ValueError: If any rule is invalid
	"""
	if not isinstance(rules, list) or not rules:
		raise ValueError('A lifecycle policy must contain at least one rule')

	priorities = []
	any_rule_priorities = []

	for rule in rules:
		if not isinstance(rule, dict):
			raise ValueError(f'Each lifecycle rule must be an object, got {rule!r}')

		priority = rule.get('rulePriority')
		if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
			raise ValueError(f'rulePriority must be a positive integer, got {priority!r}')
		if priority in priorities:
			raise ValueError(f'Duplicate rulePriority {priority} in lifecycle policy')
		priorities.append(priority)

		selection = rule.get('selection')
		if not isinstance(selection, dict):
			raise ValueError(f'Rule {priority} is missing a selection')

		tag_status = selection.get('tagStatus')
		if tag_status not in TAG_STATUS_VALUES:
			raise ValueError(f'Rule {priority}: tagStatus must be one of {", ".join(TAG_STATUS_VALUES)}')

		has_prefixes = bool(selection.get('tagPrefixList'))
		has_patterns = bool(selection.get('tagPatternList'))
		if tag_status == 'tagged':
			if has_prefixes == has_patterns:
				raise ValueError(
					f'Rule {priority}: a tagged selection requires exactly one of tagPrefixList or tagPatternList'
				)
		elif has_prefixes or has_patterns:
			raise ValueError(f'Rule {priority}: tag prefixes and patterns are only allowed when tagStatus is tagged')

		if tag_status == 'any':
			any_rule_priorities.append(priority)

		count_type = selection.get('countType')
		if count_type not in COUNT_TYPE_VALUES:
			raise ValueError(f'Rule {priority}: countType must be one of {", ".join(COUNT_TYPE_VALUES)}')

		count_unit = selection.get('countUnit')
		if count_type == 'sinceImagePushed' and count_unit != 'days':
			raise ValueError(f'Rule {priority}: sinceImagePushed requires countUnit "days"')
		if count_type == 'imageCountMoreThan' and count_unit is not None:
			raise ValueError(f'Rule {priority}: countUnit is not allowed with imageCountMoreThan')

		count_number = selection.get('countNumber')
		if isinstance(count_number, bool) or not isinstance(count_number, int) or count_number < 1:
			raise ValueError(f'Rule {priority}: countNumber must be a positive integer')

		action = rule.get('action')
		if not isinstance(action, dict):
			raise ValueError(f'Rule {priority}: action must be an object with a type')
		action_type = action.get('type')
		if action_type not in ACTION_TYPE_VALUES:
			raise ValueError(f'Rule {priority}: action type must be "expire"')

	if len(any_rule_priorities) > 1:
		raise ValueError('Only one rule may use tagStatus "any"')
	if any_rule_priorities and any_rule_priorities[0] != max(priorities):
		raise ValueError('The rule with tagStatus "any" must have the highest rulePriority')


def render_lifecycle_policy(rules: List[Dict[str, Any]]) -> str:
	"""
	Render lifecycle rules as the JSON document ECR expects.

	Args:
	    rules: Lifecycle rules

	Returns:
	    JSON policy text with rules ordered by priority
	"""
	ordered = sorted(rules, key=lambda rule: rule['rulePriority'])
	return json.dumps({'rules': ordered}, separators=(',', ':'))


def parse_lifecycle_policy(policy: Union[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
	"""
	Parse a manually supplied lifecycle policy into its rules.

	Args:
	    policy: Policy as JSON text or an already decoded dictionary

	Returns:
	    The list of rules
	"""
	if isinstance(policy, str):
		try:
			policy = json.loads(policy)
		except json.JSONDecodeError as e:
			raise ValueError(f'lifecycle_policy is not valid JSON: {e}') from e

	if not isinstance(policy, dict) or 'rules' not in policy:
		raise ValueError('lifecycle_policy must be an object with a "rules" list')

	return policy['rules']


def resolve_lifecycle_policy(
	lifecycle_policy: Optional[Union[str, Dict[str, Any]]] = None,
	template: Optional[str] = None,
	expire_untagged_after_days: Optional[int] = None,
	keep_latest_n_images: Optional[int] = None,
	expire_tagged_after_days: Optional[int] = None,
	tag_prefixes_to_keep: Optional[List[str]] = None,
) -> Tuple[str, Optional[str]]:
	"""
	Resolve the lifecycle policy applied to a repository.

	Precedence is manual policy, then template, then helper variables.

	Args:
	    lifecycle_policy: Manual policy document
	    template: Name of a predefined template
	    expire_untagged_after_days: Helper variable
	    keep_latest_n_images: Helper variable
	    expire_tagged_after_days: Helper variable
	    tag_prefixes_to_keep: Helper variable

	Returns:
	    Tuple containing:
	    - The source of the policy ('manual', 'template', 'helper_variables' or 'none')
	    - The rendered JSON policy, or None when no policy applies
	"""
	if lifecycle_policy:
		source = SOURCE_MANUAL
		rules = parse_lifecycle_policy(lifecycle_policy)
	elif template:
		source = SOURCE_TEMPLATE
		rules = get_template_rules(template)
	else:
		rules = build_helper_rules(
			expire_untagged_after_days=expire_untagged_after_days,
			keep_latest_n_images=keep_latest_n_images,
			expire_tagged_after_days=expire_tagged_after_days,
			tag_prefixes_to_keep=tag_prefixes_to_keep,
		)
		if not rules:
			return SOURCE_NONE, None
		source = SOURCE_HELPER_VARIABLES

	validate_lifecycle_rules(rules)
	logger.debug(f'Resolved lifecycle policy from {source} with {len(rules)} rules')

	return source, render_lifecycle_policy(rules)
