"""
Pull request rule utilities for the ECR repository module.

Pull request rules describe governance checks that run when images are
pushed or scanned: manual approval, security scan gates and CI integration
notifications. This module validates the rule definitions and translates
them into EventBridge event patterns.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

PULL_REQUEST_RULE_TYPES = ('approval', 'security_scan', 'ci_integration')
SEVERITY_LEVELS = ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')
RULE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9._-]{1,64}$')

ECR_SCAN_EVENT = {'source': 'aws.ecr', 'detail_type': 'ECR Image Scan', 'scan_status': 'COMPLETE'}
INSPECTOR_SCAN_EVENT = {
	'source': 'aws.inspector2',
	'detail_type': 'Inspector2 Scan',
	'scan_status': 'INITIAL_SCAN_COMPLETE',
}

DEFAULT_CONDITIONS = {
	'tag_patterns': [],
	'severity_threshold': 'HIGH',
	'require_scan_completion': False,
}
DEFAULT_ACTIONS = {
	'require_approval_count': 1,
	'notification_topic_arn': None,
	'block_on_failure': False,
}


def normalize_pull_request_rule(rule: Dict[str, Any]) -> Dict[str, Any]:
	"""
	Fill in defaults for a pull request rule.

	Args:
	    rule: Rule as supplied in the configuration

	Returns:
	    A new rule dictionary with 'enabled', 'conditions' and 'actions' populated
	"""
	conditions = dict(DEFAULT_CONDITIONS)
	conditions.update(rule.get('conditions') or {})
	actions = dict(DEFAULT_ACTIONS)
	actions.update(rule.get('actions') or {})

	return {
		'name': rule.get('name'),
		'type': rule.get('type'),
		'enabled': rule.get('enabled', True),
		'conditions': conditions,
		'actions': actions,
	}


def validate_pull_request_rules(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
	"""
	Validate and normalize a list of pull request rules.

	Args:
	    rules: Rules as supplied in the configuration

	Returns:
	    The normalized rules

	Raises:
	    ValueError: If a rule is invalid
	"""
	normalized = []
	names = set()

	for raw_rule in rules:
		rule = normalize_pull_request_rule(raw_rule)

		if not rule['name'] or not isinstance(rule['name'], str):
			raise ValueError('Every pull request rule requires a name')
		if not RULE_NAME_PATTERN.match(rule['name']):
			raise ValueError(
				f'Invalid pull request rule name {rule["name"]!r}: use up to 64 letters, numbers, dots, underscores or hyphens'
			)
		if rule['name'] in names:
			raise ValueError(f'Duplicate pull request rule name {rule["name"]!r}')
		names.add(rule['name'])

		if rule['type'] not in PULL_REQUEST_RULE_TYPES:
			raise ValueError(f'Pull request rule type must be one of: {", ".join(PULL_REQUEST_RULE_TYPES)}.')

		severity = rule['conditions']['severity_threshold']
		if severity not in SEVERITY_LEVELS:
			raise ValueError(f'Rule {rule["name"]}: severity_threshold must be one of {", ".join(SEVERITY_LEVELS)}')

		approvals = rule['actions']['require_approval_count']
		if isinstance(approvals, bool) or not isinstance(approvals, int) or approvals < 1:
			raise ValueError(f'Rule {rule["name"]}: require_approval_count must be a positive integer')

		normalized.append(rule)

	return normalized


def severities_at_or_above(threshold: str) -> List[str]:
	"""Return the severity levels at or above the given threshold."""
	return list(SEVERITY_LEVELS[SEVERITY_LEVELS.index(threshold) :])


def _tag_filter(tag_patterns: List[str]) -> Optional[List[Dict[str, str]]]:
	if not tag_patterns:
		return None
	return [{'wildcard': pattern} if '*' in pattern else {'prefix': pattern} for pattern in tag_patterns]


def scan_event(enhanced_scanning: bool = False) -> Dict[str, str]:
	"""
	Return the event fields of a completed image scan.

	Basic scanning is reported by ECR. Enhanced scanning is reported by
	Amazon Inspector, whose events identify the repository by its ARN.
	"""
	return INSPECTOR_SCAN_EVENT if enhanced_scanning else ECR_SCAN_EVENT


def build_scan_findings_detail(
	repository: str, severities: List[str], enhanced_scanning: bool = False
) -> Dict[str, Any]:
	"""
	Build the 'detail' pattern matching completed scans with findings.

	Args:
	    repository: Repository name, or the repository ARN for enhanced scanning
	    severities: Severities of which at least one finding must be reported
	    enhanced_scanning: Whether findings come from Amazon Inspector

	Returns:
	    The event pattern detail dictionary
	"""
	return {
		'repository-name': [repository],
		'scan-status': [scan_event(enhanced_scanning)['scan_status']],
		'$or': [{'finding-severity-counts': {severity: [{'numeric': ['>', 0]}]}} for severity in severities],
	}


def build_event_detail(
	rule: Dict[str, Any], repository: str, enhanced_scanning: bool = False
) -> Dict[str, Any]:
	"""
	Build the 'detail' section of the EventBridge pattern for a rule.

	Approval and CI integration rules match successful pushes. Security scan
	rules match completed scans reporting findings at or above the severity
	threshold.

	Args:
	    rule: A normalized pull request rule
	    repository: Name of the repository the rule applies to, or its ARN
	        for security scan rules with enhanced scanning
	    enhanced_scanning: Whether scan results come from Amazon Inspector

	Returns:
	    The event pattern detail dictionary
	"""
	conditions = rule['conditions']

	if rule['type'] == 'security_scan':
		detail = build_scan_findings_detail(
			repository, severities_at_or_above(conditions['severity_threshold']), enhanced_scanning
		)
	else:
		detail = {'repository-name': [repository], 'action-type': ['PUSH'], 'result': ['SUCCESS']}

	tag_filter = _tag_filter(conditions['tag_patterns'])
	if tag_filter:
		detail[tag_field_for_rule(rule)] = tag_filter

	return detail


def tag_field_for_rule(rule: Dict[str, Any]) -> str:
	"""Return the event detail field holding the image tags."""
	# Scan events list every tag of the image, push events carry the pushed tag
	if rule['type'] == 'security_scan':
		return 'image-tags'
	return 'image-tag'


def event_source_for_rule(rule: Dict[str, Any], enhanced_scanning: bool = False) -> Tuple[str, str]:
	"""Return the event source and detail-type a rule listens to."""
	if rule['type'] == 'security_scan':
		event = scan_event(enhanced_scanning)
		return event['source'], event['detail_type']
	return 'aws.ecr', 'ECR Image Action'


def summarize_pull_request_rules(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
	"""Summarize rules for stack outputs."""
	return [
		{
			'name': rule['name'],
			'type': rule['type'],
			'enabled': rule['enabled'],
			'severity_threshold': rule['conditions']['severity_threshold'] if rule['type'] == 'security_scan' else None,
			'require_approval_count': rule['actions']['require_approval_count'] if rule['type'] == 'approval' else None,
		}
		for rule in rules
	]
